from __future__ import annotations

import asyncio
import io

from PIL import Image

from parley.core.agent.history import (
    HistoryBuilder,
    PlatformFile,
    PlatformMessage,
    build_user_prompt,
    downscale_image,
)
from parley.core.agent.messages import InlineImagePart


def _png(size=(640, 480)) -> bytes:
    out = io.BytesIO()
    Image.new("RGBA", size, (255, 0, 0, 128)).save(out, format="PNG")
    return out.getvalue()


class _FakePlatform:
    def __init__(self, thread=None, channel=None, files=None):
        self.thread = list(thread or [])
        self.channel = list(channel or [])  # newest first
        self.files = dict(files or {})
        self.page_requests = []

    async def fetch_thread(self, channel_id, thread_ts):
        return list(self.thread)

    async def fetch_channel_page(self, channel_id, *, limit, cursor=None):
        start = int(cursor or 0)
        self.page_requests.append((limit, cursor))
        page = self.channel[start : start + limit]
        nxt = start + limit
        return page, (str(nxt) if nxt < len(self.channel) else None)

    async def download_file(self, url):
        if url not in self.files:
            raise IOError("404")
        return self.files[url]

    async def get_user_profile(self, user_id):
        return {}

    async def post_message(self, channel_id, text, *, thread_ts=None):
        return None

    async def upload_image(self, channel_id, data, *, thread_ts=None, title=""):
        return None


def _msg(ts, text, *, bot=False, user="U1", files=()):
    return PlatformMessage(ts=ts, user_id=user, text=text, is_assistant=bot, files=tuple(files))


def test_downscale_fits_box_and_reencodes_jpeg() -> None:
    data = downscale_image(_png((640, 480)))
    with Image.open(io.BytesIO(data)) as img:
        assert img.format == "JPEG"
        assert img.mode == "RGB"
        assert img.size == (320, 240)


def test_downscale_never_enlarges() -> None:
    data = downscale_image(_png((100, 50)))
    with Image.open(io.BytesIO(data)) as img:
        assert img.size == (100, 50)


def test_thread_history_uses_scaffold_and_skips_trigger() -> None:
    platform = _FakePlatform(
        thread=[
            _msg("1", "hello"),
            _msg("2", "hi there", bot=True, user="B"),
            _msg("3", "the new question"),
        ]
    )
    builder = HistoryBuilder(platform)
    turns = asyncio.run(builder.build_from_thread("C1", "1", exclude_ts="3"))

    assert [t.role for t in turns] == ["user", "assistant"]
    assert turns[0].text() == build_user_prompt("C1", "U1", "hello")
    assert turns[0].text() == "channel_id: C1 | user_id: U1 | message: hello"
    assert turns[1].text() == "hi there"


def test_thread_history_with_summary_keeps_recent_window_from_user_turn() -> None:
    thread = []
    for i in range(6):
        thread.append(_msg(f"u{i}", f"q{i}"))
        thread.append(_msg(f"b{i}", f"a{i}", bot=True))
    builder = HistoryBuilder(_FakePlatform(thread=thread), max_recent_messages=5)
    turns = asyncio.run(builder.build_from_thread("C1", "u0", has_summary=True))

    assert [t.role for t in turns] == ["user", "assistant", "user", "assistant"]
    assert turns[0].text().endswith("q4")


def test_images_are_embedded_and_other_files_ignored() -> None:
    platform = _FakePlatform(
        thread=[
            _msg(
                "1",
                "see attached",
                files=[
                    PlatformFile(url="img", mimetype="image/png", name="a.png"),
                    PlatformFile(url="doc", mimetype="application/pdf", name="b.pdf"),
                    PlatformFile(url="gone", mimetype="image/jpeg", name="c.jpg"),
                ],
            )
        ],
        files={"img": _png(), "doc": b"%PDF"},
    )
    turns = asyncio.run(HistoryBuilder(platform).build_from_thread("C1", "1"))

    images = turns[0].images
    assert len(images) == 1
    assert isinstance(images[0], InlineImagePart)
    assert images[0].mime_type == "image/jpeg"


def test_channel_history_is_oldest_first_and_limited() -> None:
    channel = [_msg(str(i), f"m{i}") for i in range(30, 0, -1)]
    platform = _FakePlatform(channel=channel)
    builder = HistoryBuilder(platform, channel_history_limit=5)
    turns = asyncio.run(builder.build_from_channel("C1", exclude_ts="30"))

    assert [t.text().rsplit(" ", 1)[-1] for t in turns] == ["m26", "m27", "m28", "m29"]
    assert platform.page_requests == [(5, None)]


def test_since_last_assistant_paginates_to_boundary() -> None:
    newest_first = [_msg(str(i), f"m{i}") for i in range(450, 200, -1)]
    newest_first.append(_msg("200", "bot said", bot=True))
    newest_first.extend(_msg(str(i), f"m{i}") for i in range(199, 0, -1))
    platform = _FakePlatform(channel=newest_first)
    turns = asyncio.run(
        HistoryBuilder(platform).build_since_last_assistant("C1", exclude_ts="450")
    )

    assert len(turns) == 449 - 200
    assert turns[0].text().endswith("m201")
    assert turns[-1].text().endswith("m449")
    assert [req[0] for req in platform.page_requests] == [200, 200]


def test_since_last_assistant_stops_at_log_start() -> None:
    platform = _FakePlatform(channel=[_msg("2", "b"), _msg("1", "a")])
    turns = asyncio.run(HistoryBuilder(platform).build_since_last_assistant("C1"))
    assert [t.text()[-1] for t in turns] == ["a", "b"]
