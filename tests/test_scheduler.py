import asyncio
import logging
from datetime import datetime, time, timedelta

import pytest

from marketing_data.etl import EtlScheduler, SchedulerState, next_run_after

RUN_AT = time(2, 0)


class FakeAlerts:
    def __init__(self):
        self.critical = []

    def send_critical(self, message, detail):
        self.critical.append((message, detail))


def _scheduler(job, alerts=None, **kw):
    kw.setdefault("retry_delay", timedelta(0))
    return EtlScheduler(job, alerts or FakeAlerts(), run_at=RUN_AT, **kw)


# --- next run computation ---

def test_next_run_is_today_when_before_target():
    now = datetime(2024, 3, 10, 1, 15)
    assert next_run_after(now, RUN_AT) == datetime(2024, 3, 10, 2, 0)

def test_next_run_is_tomorrow_when_past_target():
    now = datetime(2024, 3, 10, 14, 0)
    assert next_run_after(now, RUN_AT) == datetime(2024, 3, 11, 2, 0)

def test_next_run_at_exact_target_moves_to_tomorrow():
    assert next_run_after(datetime(2024, 3, 10, 2, 0), RUN_AT) == datetime(2024, 3, 11, 2, 0)

def test_next_run_crosses_month_end():
    assert next_run_after(datetime(2024, 2, 29, 23, 59), RUN_AT) == datetime(2024, 3, 1, 2, 0)


# --- retries and alerting ---

def test_three_failures_make_three_attempts_and_one_alert():
    calls = []

    def job():
        calls.append(1)
        raise RuntimeError("boom")

    alerts = FakeAlerts()
    s = _scheduler(job, alerts)
    ok = asyncio.run(s.run_once())

    assert ok is False
    assert len(calls) == 3
    assert len(alerts.critical) == 1
    assert "boom" in alerts.critical[0][1]
    assert s.state is SchedulerState.WAITING

def test_success_after_a_failure_does_not_alert():
    calls = []

    def job():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("transient")

    alerts = FakeAlerts()
    ok = asyncio.run(_scheduler(job, alerts).run_once())
    assert ok is True
    assert len(calls) == 2
    assert alerts.critical == []

def test_first_try_success_runs_once():
    calls = []
    ok = asyncio.run(_scheduler(lambda: calls.append(1)).run_once())
    assert ok is True and calls == [1]

def test_max_attempts_must_be_positive():
    with pytest.raises(ValueError):
        _scheduler(lambda: None, max_attempts=0)


# --- cancellation ---

def test_stop_interrupts_wait_promptly():
    async def scenario():
        # 01:00 now -> one hour until 02:00
        s = _scheduler(lambda: None, clock=lambda: datetime(2024, 3, 10, 1, 0))
        task = asyncio.create_task(s.run_forever())
        await asyncio.sleep(0.05)
        assert s.state is SchedulerState.WAITING
        assert s.next_run == datetime(2024, 3, 10, 2, 0)
        s.stop()
        await asyncio.wait_for(task, timeout=1)
        return s

    s = asyncio.run(scenario())
    assert s.state is SchedulerState.STOPPED

def test_stop_during_retry_delay_skips_alert():
    alerts = FakeAlerts()
    calls = []

    async def scenario():
        def job():
            calls.append(1)
            raise RuntimeError("down")

        s = _scheduler(job, alerts, retry_delay=timedelta(hours=1))
        task = asyncio.create_task(s.run_once())
        while s.state is not SchedulerState.RETRYING:
            await asyncio.sleep(0.01)
        s.stop()
        return await asyncio.wait_for(task, timeout=1)

    assert asyncio.run(scenario()) is False
    assert len(calls) == 1
    assert alerts.critical == []

def test_loop_runs_job_when_target_reached():
    calls = []

    async def scenario():
        # first read is just before 02:00, every later read is 02:00 sharp
        ticks = iter([datetime(2024, 3, 10, 1, 59, 59)] + [datetime(2024, 3, 10, 2, 0)] * 100)
        s = _scheduler(lambda: calls.append(1), clock=lambda: next(ticks))
        task = asyncio.create_task(s.run_forever())
        while not calls or s.state is not SchedulerState.WAITING:
            await asyncio.sleep(0.01)
        # after the run it waits for tomorrow's slot
        assert s.next_run == datetime(2024, 3, 11, 2, 0)
        s.stop()
        await asyncio.wait_for(task, timeout=1)
        return s

    s = asyncio.run(scenario())
    assert calls == [1]
    assert s.state is SchedulerState.STOPPED

def test_retry_waits_the_configured_delay_between_attempts(caplog):
    waits = []

    def job():
        raise RuntimeError("down")

    s = _scheduler(job, retry_delay=timedelta(minutes=10))

    async def fake_sleep(seconds):
        waits.append((seconds, s.state))
        return True

    s._sleep = fake_sleep
    with caplog.at_level(logging.INFO):
        ok = asyncio.run(s.run_once())

    assert ok is False
    assert waits == [(600.0, SchedulerState.RETRYING), (600.0, SchedulerState.RETRYING)]
    assert "attempt 3 of 3" in caplog.text
