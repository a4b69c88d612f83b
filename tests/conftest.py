import asyncio

import pytest


class VirtualClockLoop(asyncio.SelectorEventLoop):
    """Event loop whose clock jumps to the next timer instead of sleeping.

    Timers fire in the same order and at the same loop times as on a real
    loop, so a 5 second location search finishes instantly and reports
    exact elapsed times.
    """

    def __init__(self) -> None:
        super().__init__()
        self._now = 0.0
        select = self._selector.select

        def select_without_waiting(timeout=None):
            if timeout is None or timeout > 0:
                if not self._scheduled:
                    raise RuntimeError("Event loop would block forever: nothing is scheduled")
                self._now = max(self._now, self._scheduled[0].when())
            return select(0)

        self._selector.select = select_without_waiting

    def time(self) -> float:
        return self._now


@pytest.fixture
def virtual_loop():
    loop = VirtualClockLoop()
    try:
        yield loop
    finally:
        pending = asyncio.all_tasks(loop)
        for task in pending:
            task.cancel()
        if pending:
            loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
        loop.run_until_complete(loop.shutdown_asyncgens())
        loop.close()
