"""Inquiry status state machine.

new -> assigned -> responded -> booked -> closed, with cancellation allowed
until the inquiry is booked. Further partner responses keep an inquiry in
``responded``.
"""
from __future__ import annotations

from leads.errors import InquiryStateError
from leads.models import InquiryStatus

ALLOWED_TRANSITIONS: dict[InquiryStatus, frozenset[InquiryStatus]] = {
    InquiryStatus.NEW: frozenset({InquiryStatus.ASSIGNED, InquiryStatus.CANCELLED}),
    InquiryStatus.ASSIGNED: frozenset({InquiryStatus.RESPONDED, InquiryStatus.CANCELLED}),
    InquiryStatus.RESPONDED: frozenset(
        {InquiryStatus.RESPONDED, InquiryStatus.BOOKED, InquiryStatus.CANCELLED}
    ),
    InquiryStatus.BOOKED: frozenset({InquiryStatus.CLOSED}),
    InquiryStatus.CLOSED: frozenset(),
    InquiryStatus.CANCELLED: frozenset(),
}


def can_transition(current: InquiryStatus, target: InquiryStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def ensure_transition(inquiry_id: int, current: InquiryStatus, target: InquiryStatus) -> None:
    """Raise InquiryStateError unless ``current -> target`` is allowed."""
    if not can_transition(current, target):
        raise InquiryStateError(
            f"Inquiry {inquiry_id} cannot move from {current.value} to {target.value}"
        )
