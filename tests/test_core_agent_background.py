from __future__ import annotations

import asyncio

from parley.core.agent import background
from parley.core.agent.background import drain_detached, pending_detached, spawn_detached


def test_detached_task_runs_after_caller_returns() -> None:
    seen = []

    async def work() -> None:
        await asyncio.sleep(0)
        seen.append("done")

    async def main() -> None:
        spawn_detached(work(), name="work")
        assert seen == []
        await drain_detached(timeout=1)

    asyncio.run(main())
    assert seen == ["done"]
    assert pending_detached() == 0


def test_detached_failure_is_logged_not_raised(monkeypatch) -> None:
    errors = []
    monkeypatch.setattr(
        background.logger, "error", lambda msg, *args, **kw: errors.append(msg % args)
    )

    async def boom() -> None:
        raise RuntimeError("nope")

    async def main() -> None:
        spawn_detached(boom(), name="boom")
        await drain_detached(timeout=1)
        await asyncio.sleep(0)

    asyncio.run(main())
    assert errors and "boom" in errors[0] and "nope" in errors[0]


def test_drain_without_tasks_returns() -> None:
    asyncio.run(drain_detached())
