from __future__ import annotations

import asyncio

import pytest
from regexsmith_core.cancellation import CancellationToken, race
from regexsmith_core.errors import OperationAbortedError


class TestCancellationToken:
    async def test_initially_not_cancelled(self):
        token = CancellationToken()
        assert not token.cancelled
        token.raise_if_cancelled()

    async def test_cancel_is_idempotent(self):
        token = CancellationToken()
        calls = []
        token.on_cancel(lambda: calls.append(1))
        token.cancel()
        token.cancel()
        assert token.cancelled
        assert calls == [1]

    async def test_on_cancel_after_fire_runs_immediately(self):
        token = CancellationToken()
        token.cancel()
        calls = []
        token.on_cancel(lambda: calls.append(1))
        assert calls == [1]

    async def test_raise_if_cancelled(self):
        token = CancellationToken()
        token.cancel()
        with pytest.raises(OperationAbortedError):
            token.raise_if_cancelled()


class TestRace:
    async def test_work_wins(self):
        token = CancellationToken()

        async def work():
            return 42

        assert await token.race(work()) == 42

    async def test_token_wins(self):
        token = CancellationToken()
        finished = asyncio.Event()

        async def slow():
            try:
                await asyncio.sleep(10)
            finally:
                finished.set()

        asyncio.get_running_loop().call_later(0.01, token.cancel)
        with pytest.raises(OperationAbortedError):
            await token.race(slow())
        # The losing task is cancelled, not left running
        await asyncio.wait_for(finished.wait(), timeout=1)

    async def test_already_cancelled(self):
        token = CancellationToken()
        token.cancel()

        async def work():
            return 1

        with pytest.raises(OperationAbortedError):
            await token.race(work())

    async def test_work_error_propagates(self):
        token = CancellationToken()

        async def broken():
            raise ValueError("boom")

        with pytest.raises(ValueError, match="boom"):
            await token.race(broken())

    async def test_race_without_token(self):
        async def work():
            return "done"

        assert await race(work(), None) == "done"
