import datetime
import logging
import os
import sys
from pathlib import Path

import termcolor

__appname__ = "parley"

if os.name == "nt":  # Windows
    import colorama

    colorama.init()


COLORS = {
    "WARNING": "yellow",
    "INFO": "white",
    "DEBUG": "blue",
    "CRITICAL": "red",
    "ERROR": "red",
}


def resolve_log_dir() -> Path:
    """Directory for dated log files; ``PARLEY_LOG_DIR`` overrides ``~/parley_logs``."""
    override = os.environ.get("PARLEY_LOG_DIR")
    base = Path(override) if override else Path.home() / f"{__appname__}_logs"
    return base.expanduser().resolve()


class ColoredFormatter(logging.Formatter):
    def __init__(self, fmt, use_color=True):
        logging.Formatter.__init__(self, fmt)
        self.use_color = use_color

    def format(self, record):
        levelname = record.levelname
        if self.use_color and levelname in COLORS:

            def colored(text):
                return termcolor.colored(
                    text,
                    color=COLORS[levelname],
                    attrs=["bold"],
                )

            record.levelname2 = colored("{:<7}".format(record.levelname))
            record.message2 = colored(record.getMessage())

            asctime2 = datetime.datetime.fromtimestamp(record.created)
            record.asctime2 = termcolor.colored(str(asctime2), color="green")

            record.module2 = termcolor.colored(record.module, color="cyan")
            record.funcName2 = termcolor.colored(record.funcName, color="cyan")
            record.lineno2 = termcolor.colored(str(record.lineno), color="cyan")
        else:
            record.levelname2 = record.levelname
            record.message2 = record.getMessage()
            record.module2 = record.module
            record.funcName2 = record.funcName
            record.lineno2 = record.lineno
        return logging.Formatter.format(self, record)


def _file_handler() -> logging.Handler:
    logs_dir = resolve_log_dir()
    logs_dir.mkdir(parents=True, exist_ok=True)
    current_date = datetime.datetime.now().strftime("%Y-%m-%d")
    handler = logging.FileHandler(logs_dir / f"{__appname__}_{current_date}.log")
    handler.setFormatter(
        logging.Formatter(
            "%(asctime)s [%(levelname)s] %(module)s:%(funcName)s:%(lineno)d - %(message)s"
        )
    )
    return handler


logger = logging.getLogger(__appname__)
logger.setLevel(logging.INFO)

stream_handler = logging.StreamHandler(sys.stderr)
stream_handler.setFormatter(
    ColoredFormatter(
        "%(asctime)s [%(levelname2)s] %(module2)s:%(funcName2)s:%(lineno2)s"
        "- %(message2)s"
    )
)
logger.addHandler(stream_handler)

try:
    logger.addHandler(_file_handler())
except OSError as exc:
    logger.warning("File logging disabled: %s", exc)
