from datetime import datetime

import pytest

from webrana.services import order_state as s
from webrana.services.orders import calculate_expiry


def test_happy_path_transitions_are_allowed():
    path = [s.PENDING, s.PROCESSING, s.PROVISIONING, s.ACTIVE, s.EXPIRING_SOON, s.EXPIRED, s.SUSPENDED, s.TERMINATED]
    for current, new in zip(path, path[1:]):
        assert s.is_valid_transition(current, new), (current, new)


@pytest.mark.parametrize(
    "current,new",
    [
        (s.PENDING, s.ACTIVE),
        (s.PROVISIONING, s.PROCESSING),
        (s.EXPIRING_SOON, s.SUSPENDED),
        (s.TERMINATED, s.ACTIVE),
        (s.CANCELED, s.PENDING),
        (s.ACTIVE, s.ACTIVE),
    ],
)
def test_forbidden_transitions(current, new):
    assert not s.is_valid_transition(current, new)


def test_terminal_states():
    assert s.is_terminal(s.TERMINATED)
    assert s.is_terminal(s.CANCELED)
    assert not s.is_terminal(s.FAILED)
    assert not s.is_terminal("UNKNOWN")


def test_failed_can_only_be_retried():
    assert s.valid_next_states(s.FAILED) == [s.PROCESSING]


def test_describe_transition_falls_back_to_generic_text():
    assert s.describe_transition(s.SUSPENDED, s.ACTIVE) == "VPS restored from suspension"
    assert s.describe_transition("X", "Y") == "Status changed from X to Y"


def test_monthly_expiry_clamps_to_month_end():
    assert calculate_expiry(datetime(2024, 1, 31, 10, 0), "MONTHLY") == datetime(2024, 2, 29, 10, 0)
    assert calculate_expiry(datetime(2024, 12, 15), "MONTHLY") == datetime(2025, 1, 15)


def test_yearly_and_daily_expiry():
    assert calculate_expiry(datetime(2024, 2, 29), "YEARLY") == datetime(2025, 2, 28)
    assert calculate_expiry(datetime(2024, 3, 1, 8, 30), "DAILY") == datetime(2024, 3, 2, 8, 30)
