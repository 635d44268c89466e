import asyncio

import pytest

from src.checkout.payment_session import EXPIRED_REASON, PaymentSession
from src.checkout.timers import AsyncioRecurringTimer
from src.integrations.clients.mocks.mpesa import MpesaMockClient
from src.integrations.contracts.errors import PaymentTerminalFailure
from src.integrations.contracts.interfaces import SessionState
from src.utils.checkout_config import PaymentTimersConfig


@pytest.mark.asyncio
async def test_timer_fires_repeatedly_until_cancelled():
    fired = []

    async def callback():
        fired.append(1)

    timer = AsyncioRecurringTimer(0.01, callback, "test")
    timer.start()
    await asyncio.sleep(0.08)
    timer.cancel()
    count = len(fired)
    await asyncio.sleep(0.03)

    assert count >= 2
    assert len(fired) == count
    assert not timer.active


@pytest.mark.asyncio
async def test_callback_cancelling_its_own_timer_runs_to_completion():
    steps = []
    timer = None

    async def callback():
        steps.append("start")
        timer.cancel()
        await asyncio.sleep(0)
        steps.append("end")

    timer = AsyncioRecurringTimer(0.01, callback, "self-cancel")
    timer.start()
    await asyncio.sleep(0.05)

    assert steps == ["start", "end"]
    assert not timer.active


@pytest.mark.asyncio
async def test_callback_errors_are_logged_and_timer_keeps_running(caplog):
    calls = []

    async def callback():
        calls.append(1)
        raise RuntimeError("boom")

    timer = AsyncioRecurringTimer(0.01, callback, "flaky")
    timer.start()
    await asyncio.sleep(0.06)
    timer.cancel()

    assert len(calls) >= 2
    assert "Timer flaky callback failed" in caplog.text


@pytest.mark.asyncio
async def test_timer_rejects_bad_usage():
    async def callback():
        pass

    with pytest.raises(ValueError):
        AsyncioRecurringTimer(0, callback)

    timer = AsyncioRecurringTimer(0.01, callback)
    timer.start()
    with pytest.raises(RuntimeError):
        timer.start()
    timer.cancel()


@pytest.mark.asyncio
async def test_session_completes_on_real_timers(draft_application):
    payments = MpesaMockClient(status_script=["pending", "completed"], receipt_number="QAX123")
    completed = []

    async def on_completed(result):
        completed.append(result)

    session = PaymentSession(
        payments,
        timers=PaymentTimersConfig(poll_interval_seconds=0.01, countdown_seconds=500, tick_seconds=0.01),
        on_completed=on_completed,
    )
    await session.initiate(draft_application, "0712345678")

    result = await asyncio.wait_for(session.wait(), timeout=2)
    await session.join()

    assert result.receipt_number == "QAX123"
    assert session.state is SessionState.COMPLETED
    assert not session.timers_active
    assert len(completed) == 1


@pytest.mark.asyncio
async def test_session_expires_on_real_timers(draft_application):
    payments = MpesaMockClient(status_script=["pending"])
    session = PaymentSession(
        payments,
        timers=PaymentTimersConfig(poll_interval_seconds=5, countdown_seconds=3, tick_seconds=0.01),
    )
    await session.initiate(draft_application, "0712345678")

    with pytest.raises(PaymentTerminalFailure) as exc_info:
        await asyncio.wait_for(session.wait(), timeout=2)

    assert exc_info.value.state == "expired"
    assert exc_info.value.reason == EXPIRED_REASON
    assert payments.calls["get_payment_status"] == 0
    assert not session.timers_active
