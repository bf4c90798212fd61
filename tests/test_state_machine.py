from __future__ import annotations

import pytest

from classroom_booking.errors import InvalidTransitionError
from classroom_booking.models import ReservationStatus as S
from classroom_booking.state_machine import TERMINAL, can_transition, check_transition, is_editable_by_owner

ALLOWED = {
    (S.PENDING, S.CONFIRMED),
    (S.PENDING, S.REJECTED),
    (S.PENDING, S.CANCELLED),
    (S.CONFIRMED, S.CANCELLED),
}


@pytest.mark.parametrize("current", list(S))
@pytest.mark.parametrize("requested", [S.CONFIRMED, S.REJECTED, S.CANCELLED])
def test_transition_table(current: S, requested: S) -> None:
    assert can_transition(current, requested) is ((current, requested) in ALLOWED)


def test_nothing_goes_back_to_pending() -> None:
    assert not any(can_transition(s, S.PENDING) for s in S)


def test_invalid_transition_names_both_statuses() -> None:
    with pytest.raises(InvalidTransitionError) as excinfo:
        check_transition(S.REJECTED, S.CONFIRMED)
    assert excinfo.value.current == "REJECTED"
    assert excinfo.value.requested == "CONFIRMED"
    assert "REJECTED -> CONFIRMED" in str(excinfo.value)


def test_terminal_states() -> None:
    assert TERMINAL == {S.REJECTED, S.CANCELLED}


def test_only_pending_is_editable_by_owner() -> None:
    assert [s for s in S if is_editable_by_owner(s)] == [S.PENDING]
