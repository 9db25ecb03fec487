import asyncio

import pytest

from firstaid.timer import AsyncioScheduler, IntervalTimer, ManualScheduler, PollingScheduler


def test_t_ticks_expire_the_timer():
    t = IntervalTimer(5, scheduler=ManualScheduler())
    t.start()
    for _ in range(5):
        t.tick()
    assert t.state == "expired"
    assert t.remaining == 0
    t.tick()
    assert t.remaining == 0


@pytest.mark.parametrize("setup", ["idle", "running", "paused", "expired"])
def test_reset_from_any_state(setup):
    s = ManualScheduler()
    t = IntervalTimer(30, scheduler=s)
    if setup != "idle":
        t.start()
        s.advance(4)
    if setup == "paused":
        t.stop()
    if setup == "expired":
        s.advance(60)
        assert t.is_expired
    t.reset()
    assert t.remaining == 30
    assert t.state == "idle"
    assert s.pending == 0


@pytest.mark.parametrize("remaining,text", [(65, "01:05"), (0, "00:00"), (1200, "20:00"), (59, "00:59")])
def test_formatted_remaining(remaining, text):
    t = IntervalTimer(1200, scheduler=ManualScheduler())
    t.remaining = remaining
    assert t.formatted_remaining() == text


def test_pause_and_resume_keep_remaining(scheduler: ManualScheduler):
    t = IntervalTimer(60, scheduler=scheduler)
    t.start()
    scheduler.advance(3)
    assert t.remaining == 57
    t.stop()
    assert t.state == "paused"
    scheduler.advance(5)
    assert t.remaining == 57
    t.start()
    scheduler.advance(2)
    assert t.remaining == 55


def test_start_while_running_does_not_double_schedule(scheduler: ManualScheduler):
    t = IntervalTimer(10, scheduler=scheduler)
    t.start()
    t.start()
    assert scheduler.pending == 1
    scheduler.advance(4)
    assert t.remaining == 6


def test_ticks_land_on_whole_seconds_from_start(scheduler: ManualScheduler):
    t = IntervalTimer(10, scheduler=scheduler)
    scheduler.advance(0.3)
    t.start()
    scheduler.advance(0.99)
    assert t.remaining == 10
    scheduler.advance(0.02)
    assert t.remaining == 9
    scheduler.advance(7.5)
    assert t.remaining == 2


def test_start_on_expired_timer_is_noop_until_restart(scheduler: ManualScheduler):
    t = IntervalTimer(2, scheduler=scheduler)
    t.start()
    scheduler.advance(2)
    assert t.is_expired
    t.start()
    assert t.is_expired
    t.restart()
    assert t.is_running and t.remaining == 2


def test_callbacks(scheduler: ManualScheduler):
    ticks = []
    expired = []
    t = IntervalTimer(3, scheduler=scheduler, on_tick=ticks.append, on_expire=lambda: expired.append(True))
    t.start()
    scheduler.advance(10)
    assert ticks == [2, 1, 0]
    assert expired == [True]
    assert scheduler.pending == 0


def test_dispose_cancels_and_ignores_later_ticks(scheduler: ManualScheduler):
    t = IntervalTimer(10, scheduler=scheduler)
    t.start()
    scheduler.advance(1)
    t.dispose()
    assert scheduler.pending == 0
    t.tick()
    t.start()
    scheduler.advance(5)
    assert t.remaining == 9
    assert not t.is_running


def test_total_must_be_positive():
    with pytest.raises(ValueError):
        IntervalTimer(0, scheduler=ManualScheduler())


def test_polling_scheduler_catches_up():
    now = [100.0]
    s = PollingScheduler(clock=lambda: now[0])
    t = IntervalTimer(10, scheduler=s)
    t.start()
    now[0] = 104.5
    s.poll()
    assert t.remaining == 6
    now[0] = 120.0
    s.poll()
    assert t.is_expired


async def test_asyncio_scheduler_runs_to_expiry():
    loop = asyncio.get_running_loop()
    done = loop.create_future()
    ticks = []
    t = IntervalTimer(
        5,
        scheduler=AsyncioScheduler(),
        interval=0.01,
        on_tick=ticks.append,
        on_expire=lambda: done.set_result(loop.time()),
    )
    started = loop.time()
    t.start()
    finished = await asyncio.wait_for(done, timeout=2)
    assert ticks == [4, 3, 2, 1, 0]
    assert finished - started >= 0.05 - 1e-3
    await asyncio.sleep(0.03)
    assert ticks == [4, 3, 2, 1, 0]
