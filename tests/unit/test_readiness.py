import asyncio

from sandbox_orchestrator.tasks.readiness import wait_until_ready


def test_wait_until_ready_gives_up_after_max_attempts() -> None:
    calls = []

    async def probe() -> bool:
        calls.append(1)
        return False

    ready = asyncio.run(wait_until_ready(probe, max_attempts=3, interval_s=0.0))

    assert ready is False
    assert len(calls) == 3


def test_wait_until_ready_stops_at_first_success() -> None:
    answers = iter([False, True, True])
    calls = []

    async def probe() -> bool:
        calls.append(1)
        return next(answers)

    ready = asyncio.run(wait_until_ready(probe, max_attempts=5, interval_s=0.0))

    assert ready is True
    assert len(calls) == 2
