from rollcall.modules.scan_debouncer import ScanDebouncer


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def make_debouncer(cooldown=3.0):
    clock = FakeClock()
    return ScanDebouncer(cooldown_seconds=cooldown, clock=clock), clock


def test_identical_payload_ignored_within_cooldown():
    debouncer, clock = make_debouncer()

    assert debouncer.begin('A')
    debouncer.finish()

    clock.advance(2.9)
    assert not debouncer.should_dispatch('A')
    assert not debouncer.begin('A')

    clock.advance(0.2)
    assert debouncer.should_dispatch('A')


def test_different_payload_not_blocked_by_cooldown():
    debouncer, clock = make_debouncer()

    assert debouncer.begin('A')
    debouncer.finish()
    clock.advance(0.5)

    assert debouncer.begin('B')


def test_everything_blocked_while_in_flight():
    debouncer, _ = make_debouncer()

    assert debouncer.begin('A')
    assert debouncer.in_flight
    assert not debouncer.should_dispatch('B')
    assert not debouncer.begin('B')

    debouncer.finish()
    assert debouncer.should_dispatch('B')


def test_dispatching_context_releases_on_error():
    debouncer, _ = make_debouncer()

    try:
        with debouncer.dispatching('A') as accepted:
            assert accepted
            raise RuntimeError('validation blew up')
    except RuntimeError:
        pass

    assert not debouncer.in_flight
    with debouncer.dispatching('A') as accepted:
        assert not accepted


def test_reset_clears_cooldowns():
    debouncer, _ = make_debouncer()
    debouncer.begin('A')
    debouncer.reset()

    assert not debouncer.in_flight
    assert debouncer.should_dispatch('A')


def test_zero_cooldown_allows_immediate_repeat():
    debouncer, _ = make_debouncer(cooldown=0)
    assert debouncer.begin('A')
    debouncer.finish()
    assert debouncer.begin('A')
