from leasebot.core.fee_policy import FeeMode, clamp_or_reject


def test_accept_mode_rejects_above_max() -> None:
    d = clamp_or_reject(15, min_fee=2, max_fee=10, mode=FeeMode.ACCEPT)
    assert d.allowed is False
    assert d.effective_rate is None
    assert d.reason == "fee_above_max"


def test_open_mode_rejects_above_max() -> None:
    d = clamp_or_reject(11, min_fee=2, max_fee=10, mode=FeeMode.OPEN)
    assert d.allowed is False
    assert d.reason == "fee_above_max"


def test_accept_mode_has_no_floor() -> None:
    d = clamp_or_reject(1, min_fee=2, max_fee=10, mode=FeeMode.ACCEPT)
    assert d.allowed is True
    assert d.effective_rate == 1
    assert d.reason == "fee_within_bounds"


def test_open_mode_raises_to_min() -> None:
    d = clamp_or_reject(1, min_fee=2, max_fee=10, mode=FeeMode.OPEN)
    assert d.allowed is True
    assert d.effective_rate == 2
    assert d.requested_rate == 1
    assert d.reason == "fee_raised_to_min"


def test_boundaries_are_inclusive() -> None:
    assert clamp_or_reject(10, min_fee=2, max_fee=10, mode=FeeMode.OPEN).effective_rate == 10
    assert clamp_or_reject(2, min_fee=2, max_fee=10, mode=FeeMode.OPEN).effective_rate == 2
    assert clamp_or_reject(10, min_fee=2, max_fee=10, mode=FeeMode.ACCEPT).allowed is True


def test_decision_is_deterministic() -> None:
    first = clamp_or_reject(7, min_fee=2, max_fee=10, mode=FeeMode.OPEN)
    second = clamp_or_reject(7, min_fee=2, max_fee=10, mode=FeeMode.OPEN)
    assert first == second
