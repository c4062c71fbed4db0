import threading

from throttle import SharedBackoff, pause, retry_after_seconds


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


def test_pause_doubles_up_to_maximum():
    backoff = SharedBackoff(base=0.5, maximum=3.0, clock=FakeClock())
    assert [backoff.penalize() for _ in range(5)] == [0.5, 1.0, 2.0, 3.0, 3.0]
    assert backoff.failures == 5


def test_retry_after_extends_pause():
    clock = FakeClock()
    backoff = SharedBackoff(base=0.5, maximum=30.0, clock=clock)
    assert backoff.penalize(retry_after=7) == 7
    assert backoff.delay() == 7
    clock.now += 5
    assert backoff.delay() == 2


def test_reset_clears_pause():
    backoff = SharedBackoff(base=1, maximum=10, clock=FakeClock())
    backoff.penalize()
    backoff.reset()
    assert backoff.failures == 0
    assert backoff.delay() == 0


def test_wait_returns_false_when_cancelled():
    backoff = SharedBackoff(base=60, maximum=60)
    backoff.penalize()
    cancel = threading.Event()
    cancel.set()
    assert backoff.wait(cancel) is False
    assert SharedBackoff().wait(threading.Event()) is True


def test_retry_after_header():
    assert retry_after_seconds({"Retry-After": "3"}) == 3.0
    assert retry_after_seconds({"Retry-After": "Wed, 21 Oct 2015 07:28:00 GMT"}) is None
    assert retry_after_seconds({}) is None
    assert retry_after_seconds(None) is None


def test_pause_is_cancellable():
    cancel = threading.Event()
    cancel.set()
    assert pause(60, cancel) is False
    assert pause(0, cancel) is False
    assert pause(0) is True
