import asyncio

import pytest

from lt_driver.cancellation import CancellationSignal


pytestmark = pytest.mark.unit_driver


def test_signal_fires_once_and_calls_back_once():
    reasons = []
    signal = CancellationSignal(on_fire=reasons.append)
    assert signal.fire("cancel requested") is True
    assert signal.fire("again") is False
    assert signal.is_set
    assert signal.reason == "cancel requested"
    assert reasons == ["cancel requested"]


def test_failing_callback_does_not_break_fire():
    def boom(reason):
        raise RuntimeError(reason)

    signal = CancellationSignal(on_fire=boom)
    assert signal.fire() is True
    assert signal.is_set


def test_sleep_returns_early_when_fired():
    async def scenario():
        signal = CancellationSignal()
        asyncio.get_running_loop().call_later(0.05, signal.fire)
        return await signal.sleep(10)

    assert asyncio.run(asyncio.wait_for(scenario(), timeout=5)) is True


def test_sleep_times_out_when_not_fired():
    async def scenario():
        return await CancellationSignal().sleep(0.01)

    assert asyncio.run(scenario()) is False
