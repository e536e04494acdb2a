"""Tests for the booking status table and flow helpers."""
import pytest

from driveflow.core.status_flow import (
    BookingStatus,
    DIRECT_FLOW,
    FlowEvent,
    PICKUP_FLOW,
    TRANSITIONS,
    allowed_events,
    event_for,
    normalize_status,
    timeline,
)
from driveflow.core.workflow import compute_next_state


@pytest.mark.parametrize("flow,pickup", [(PICKUP_FLOW, True), (DIRECT_FLOW, False)])
def test_next_state_walks_each_flow_in_order(flow, pickup):
    for current, expected in zip(flow, flow[1:]):
        assert compute_next_state(current, pickup) == expected
    assert compute_next_state(flow[-1], pickup) is None


def test_direct_flow_skips_pickup_legs():
    assert compute_next_state(BookingStatus.ACCEPTED, False) == BookingStatus.VEHICLE_AT_MERCHANT
    assert compute_next_state(BookingStatus.SERVICE_COMPLETED, False) == BookingStatus.DELIVERED
    assert compute_next_state(BookingStatus.ACCEPTED, True) == BookingStatus.REACHED_CUSTOMER


@pytest.mark.parametrize("status", [BookingStatus.CANCELLED, BookingStatus.COMPLETED, BookingStatus.ON_HOLD])
def test_out_of_band_states_have_no_next_state(status):
    assert compute_next_state(status, True) is None
    assert compute_next_state(status, False) is None


def test_unknown_status_has_no_next_state():
    assert compute_next_state("WAITING_FOR_GODOT", True) is None


def test_pickup_only_states_are_not_in_direct_table():
    assert (False, BookingStatus.REACHED_CUSTOMER) not in TRANSITIONS
    assert (False, BookingStatus.VEHICLE_PICKED) not in TRANSITIONS
    assert (True, BookingStatus.REACHED_CUSTOMER) in TRANSITIONS


@pytest.mark.parametrize("pickup", [True, False])
def test_every_open_flow_state_can_cancel_and_hold(pickup):
    flow = PICKUP_FLOW if pickup else DIRECT_FLOW
    for state in flow[:-1]:
        events = allowed_events(state, pickup)
        assert events[FlowEvent.CANCEL] == BookingStatus.CANCELLED
        assert events[FlowEvent.HOLD] == BookingStatus.ON_HOLD


def test_on_hold_only_allows_cancel():
    assert allowed_events(BookingStatus.ON_HOLD, True) == {FlowEvent.CANCEL: BookingStatus.CANCELLED}
    assert allowed_events(BookingStatus.CANCELLED, True) == {}
    assert allowed_events(BookingStatus.DELIVERED, False) == {}


def test_event_for_finds_skips_as_illegal():
    assert event_for(BookingStatus.CREATED, BookingStatus.ASSIGNED, True) == FlowEvent.ADVANCE
    assert event_for(BookingStatus.CREATED, BookingStatus.SERVICE_STARTED, True) is None


@pytest.mark.parametrize("raw", ["On Hold", "on_hold", "DELAYED", "delay", "ON_HOLD"])
def test_legacy_hold_spellings_normalize(raw):
    assert normalize_status(raw) == BookingStatus.ON_HOLD


def test_normalize_rejects_unknown_values():
    assert normalize_status("SERVICE_STARTED") == BookingStatus.SERVICE_STARTED
    with pytest.raises(ValueError):
        normalize_status("in the garage")


def test_timeline_marks_completed_and_active_steps():
    steps = timeline(BookingStatus.SERVICE_STARTED, False)
    assert [s["status"] for s in steps] == [s.value for s in DIRECT_FLOW]
    completed = [s["status"] for s in steps if s["completed"]]
    assert completed == ["CREATED", "ASSIGNED", "ACCEPTED", "VEHICLE_AT_MERCHANT"]
    assert [s["status"] for s in steps if s["active"]] == ["SERVICE_STARTED"]


def test_timeline_for_cancelled_booking_has_nothing_completed():
    steps = timeline(BookingStatus.CANCELLED, True)
    assert not any(s["completed"] or s["active"] for s in steps)
