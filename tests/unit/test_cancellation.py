"""
Unit tests for the cancellation token
"""
import asyncio

import pytest

from chunkwise.core.exceptions import TranslationCancelledError
from chunkwise.core.translation.cancellation import CancellationToken


class TestCancellationToken:

    @pytest.mark.asyncio
    async def test_race_returns_result(self):
        """Should return the awaited value when not cancelled"""
        token = CancellationToken()

        async def work():
            return "done"

        assert await token.race(work()) == "done"

    @pytest.mark.asyncio
    async def test_cancel_interrupts_in_flight_work(self):
        """Should raise as soon as cancel() is called"""
        token = CancellationToken()
        finished = []

        async def slow():
            await asyncio.sleep(10)
            finished.append(True)

        async def stop_soon():
            await asyncio.sleep(0.01)
            token.cancel("Stopped by user")

        stopper = asyncio.ensure_future(stop_soon())
        with pytest.raises(TranslationCancelledError) as exc_info:
            await token.race(slow())
        await stopper

        assert exc_info.value.message == "Stopped by user"
        assert finished == []

    @pytest.mark.asyncio
    async def test_cancelled_token_rejects_new_work(self):
        """Should fail immediately once cancelled, until reset"""
        token = CancellationToken()
        token.cancel()

        async def work():
            return 1

        with pytest.raises(TranslationCancelledError):
            await token.race(work())

        token.reset()
        assert not token.is_cancelled
        assert token.reason is None
        assert await token.race(work()) == 1

    def test_first_reason_wins(self):
        """Should keep the reason of the first cancel"""
        token = CancellationToken()
        token.cancel("quota")
        token.cancel("user")

        assert token.reason == "quota"
