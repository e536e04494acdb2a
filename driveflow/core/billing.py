# driveflow/core/billing.py
from typing import Iterable, Optional


def _amount(value: Optional[float]) -> float:
    return float(value) if value is not None else 0.0


def calculate_total(parts_total: Optional[float] = 0, labour_cost: Optional[float] = 0, gst: Optional[float] = 0) -> float:
    """Bill total = parts + labour + GST. Missing values count as 0.

    Negative inputs are passed through unchanged.
    """
    return round(_amount(parts_total) + _amount(labour_cost) + _amount(gst), 2)


def parts_total(lines: Iterable) -> float:
    """Sum of price * quantity over billable part lines."""
    return round(sum(_amount(line.price) * (line.quantity or 0) for line in lines), 2)


def booking_total(booking) -> float:
    """Amount owed for a booking.

    A submitted bill is authoritative; before that the estimate is the
    catalogue services plus the billable part lines.
    """
    billing = booking.billing
    if billing is not None and billing.submitted_at is not None:
        return billing.total
    return round(_amount(booking.services_total) + parts_total(booking.parts), 2)


def reprice_parts(booking, lines: list) -> dict:
    """Patch for replacing ``booking.parts``: the lines, the bill's parts total and the booking total."""
    new_parts_total = parts_total(lines)
    billing_data = booking.billing.model_dump()
    billing_data["parts_total"] = new_parts_total
    billing = type(booking.billing).model_validate(billing_data)
    repriced = booking.model_copy(update={"parts": lines, "billing": billing})
    return {
        "parts": lines,
        "billing": billing,
        "total_amount": booking_total(repriced),
    }
