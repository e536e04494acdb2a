# driveflow/core/status_flow.py
"""
Booking status table.

Two ordered flows exist: pickup (vehicle collected from the customer) and
direct drop-off. ON_HOLD, CANCELLED and the legacy COMPLETED value sit
outside both flows. Legal moves are listed explicitly in ``TRANSITIONS``;
the table is checked for completeness when this module is imported.
"""
from enum import Enum
from typing import Dict, List, Optional, Tuple


class BookingStatus(str, Enum):
    CREATED = "CREATED"
    ASSIGNED = "ASSIGNED"
    ACCEPTED = "ACCEPTED"
    REACHED_CUSTOMER = "REACHED_CUSTOMER"
    VEHICLE_PICKED = "VEHICLE_PICKED"
    REACHED_MERCHANT = "REACHED_MERCHANT"
    VEHICLE_AT_MERCHANT = "VEHICLE_AT_MERCHANT"
    SERVICE_STARTED = "SERVICE_STARTED"
    SERVICE_COMPLETED = "SERVICE_COMPLETED"
    OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    # Out-of-band
    ON_HOLD = "ON_HOLD"
    COMPLETED = "COMPLETED"  # legacy alias, hanya untuk data lama


class FlowEvent(str, Enum):
    ADVANCE = "advance"
    CANCEL = "cancel"
    HOLD = "hold"


PICKUP_FLOW: Tuple[BookingStatus, ...] = (
    BookingStatus.CREATED,
    BookingStatus.ASSIGNED,
    BookingStatus.ACCEPTED,
    BookingStatus.REACHED_CUSTOMER,
    BookingStatus.VEHICLE_PICKED,
    BookingStatus.REACHED_MERCHANT,
    BookingStatus.VEHICLE_AT_MERCHANT,
    BookingStatus.SERVICE_STARTED,
    BookingStatus.SERVICE_COMPLETED,
    BookingStatus.OUT_FOR_DELIVERY,
    BookingStatus.DELIVERED,
)

DIRECT_FLOW: Tuple[BookingStatus, ...] = (
    BookingStatus.CREATED,
    BookingStatus.ASSIGNED,
    BookingStatus.ACCEPTED,
    BookingStatus.VEHICLE_AT_MERCHANT,
    BookingStatus.SERVICE_STARTED,
    BookingStatus.SERVICE_COMPLETED,
    BookingStatus.DELIVERED,
)

OUT_OF_BAND = frozenset({BookingStatus.ON_HOLD, BookingStatus.CANCELLED, BookingStatus.COMPLETED})
TERMINAL = frozenset({BookingStatus.DELIVERED, BookingStatus.CANCELLED, BookingStatus.COMPLETED})

STATUS_LABELS: Dict[BookingStatus, str] = {
    BookingStatus.CREATED: "Created",
    BookingStatus.ASSIGNED: "Assigned",
    BookingStatus.ACCEPTED: "Accepted",
    BookingStatus.REACHED_CUSTOMER: "Reached Customer",
    BookingStatus.VEHICLE_PICKED: "Vehicle Picked",
    BookingStatus.REACHED_MERCHANT: "Reached Merchant",
    BookingStatus.VEHICLE_AT_MERCHANT: "At Merchant",
    BookingStatus.SERVICE_STARTED: "Service Started",
    BookingStatus.SERVICE_COMPLETED: "Service Completed",
    BookingStatus.OUT_FOR_DELIVERY: "Out for Delivery",
    BookingStatus.DELIVERED: "Delivered",
    BookingStatus.CANCELLED: "Cancelled",
    BookingStatus.ON_HOLD: "On Hold",
    BookingStatus.COMPLETED: "Completed",
}

# Ejaan lama yang masih ada di data
_LEGACY_ALIASES: Dict[str, BookingStatus] = {
    "on hold": BookingStatus.ON_HOLD,
    "on_hold": BookingStatus.ON_HOLD,
    "delay": BookingStatus.ON_HOLD,
    "delayed": BookingStatus.ON_HOLD,
}


def normalize_status(value) -> BookingStatus:
    """Parse a status value, accepting legacy hold spellings. Raises ValueError if unknown."""
    if isinstance(value, BookingStatus):
        return value
    text = str(value).strip()
    try:
        return BookingStatus(text)
    except ValueError:
        alias = _LEGACY_ALIASES.get(text.lower())
        if alias is None:
            raise ValueError(f"Unknown booking status: {value!r}")
        return alias


def flow_for(pickup_required: bool) -> Tuple[BookingStatus, ...]:
    return PICKUP_FLOW if pickup_required else DIRECT_FLOW


def progress_index(status: BookingStatus, pickup_required: bool) -> Optional[int]:
    """Position of ``status`` in its flow, or None for out-of-band / foreign states."""
    try:
        return flow_for(pickup_required).index(status)
    except ValueError:
        return None


def is_step_completed(step: BookingStatus, current: BookingStatus, pickup_required: bool) -> bool:
    step_idx = progress_index(step, pickup_required)
    current_idx = progress_index(current, pickup_required)
    if step_idx is None or current_idx is None:
        return False
    return step_idx < current_idx


def timeline(current: BookingStatus, pickup_required: bool) -> List[dict]:
    """Labelled flow steps with completed/active flags, for progress displays."""
    return [
        {
            "status": step.value,
            "label": STATUS_LABELS[step],
            "completed": is_step_completed(step, current, pickup_required),
            "active": step == current,
        }
        for step in flow_for(pickup_required)
    ]


# --- Tabel transisi: (pickup_required, status) -> {event: target} ---
def _build_transitions() -> Dict[Tuple[bool, BookingStatus], Dict[FlowEvent, BookingStatus]]:
    table: Dict[Tuple[bool, BookingStatus], Dict[FlowEvent, BookingStatus]] = {}
    for pickup_required in (True, False):
        flow = flow_for(pickup_required)
        for idx, state in enumerate(flow):
            moves: Dict[FlowEvent, BookingStatus] = {}
            if state not in TERMINAL:
                moves[FlowEvent.ADVANCE] = flow[idx + 1]
                moves[FlowEvent.CANCEL] = BookingStatus.CANCELLED
                moves[FlowEvent.HOLD] = BookingStatus.ON_HOLD
            table[(pickup_required, state)] = moves
        # Resume dari ON_HOLD memakai delay.previous_status, bukan tabel
        table[(pickup_required, BookingStatus.ON_HOLD)] = {FlowEvent.CANCEL: BookingStatus.CANCELLED}
        table[(pickup_required, BookingStatus.CANCELLED)] = {}
        table[(pickup_required, BookingStatus.COMPLETED)] = {}
    return table


TRANSITIONS = _build_transitions()


def _check_table_complete() -> None:
    for pickup_required in (True, False):
        for state in BookingStatus:
            in_scope = state in flow_for(pickup_required) or state in OUT_OF_BAND
            if in_scope and (pickup_required, state) not in TRANSITIONS:
                raise RuntimeError(f"Transition table missing {state.value} (pickup={pickup_required})")
            if not in_scope and (pickup_required, state) in TRANSITIONS:
                raise RuntimeError(f"Transition table lists foreign state {state.value} (pickup={pickup_required})")


_check_table_complete()


def allowed_events(status: BookingStatus, pickup_required: bool) -> Dict[FlowEvent, BookingStatus]:
    return dict(TRANSITIONS.get((pickup_required, status), {}))


def event_for(current: BookingStatus, target: BookingStatus, pickup_required: bool) -> Optional[FlowEvent]:
    """Which event moves ``current`` to ``target``, if any."""
    for event, destination in allowed_events(current, pickup_required).items():
        if destination == target:
            return event
    return None


def can_resume_to(target: BookingStatus, pickup_required: bool) -> bool:
    return target in flow_for(pickup_required) and target not in TERMINAL
