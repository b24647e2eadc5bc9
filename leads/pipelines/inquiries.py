"""Inquiry lifecycle: creation with best-effort distribution, responses, booking.

Creating an inquiry never depends on matching. The inquiry is committed
first; matching and distribution run afterwards and any failure there is
logged and leaves the inquiry in ``new`` for a later retry.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Mapping

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from leads import models
from leads.errors import DataAccessError, InquiryStateError, NotFoundError
from leads.lifecycle import ensure_transition
from leads.models import InquiryStatus, ServiceCategory
from leads.pipelines.distribution import DistributionResult, distribute_inquiry
from leads.pipelines.matching import find_matching_partners, get_inquiry_row, resolve_limit
from leads.pipelines.partners import get_partner
from leads.rules import PriceRange, normalize_whitespace

logger = logging.getLogger(__name__)

MAX_REQUIREMENTS_LENGTH = 1000
MAX_RESPONSE_LENGTH = 500


@dataclass
class InquiryCreation:
    """Result of creating an inquiry."""
    inquiry: models.Inquiry
    distribution: DistributionResult | None


async def _commit(session: AsyncSession, action: str, inquiry_id: int) -> None:
    try:
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(f"Failed to {action} inquiry {inquiry_id}: {e}", exc_info=True)
        raise DataAccessError(f"Failed to {action} inquiry {inquiry_id}: {e}") from e


def _validate_budget(budget_min: float | None, budget_max: float | None) -> None:
    if (budget_min is None) != (budget_max is None):
        raise ValueError("Budget needs both min and max, or neither")
    if budget_min is not None:
        PriceRange(budget_min, budget_max)


async def distribute_matches(
    session: AsyncSession,
    inquiry: models.Inquiry,
    limit: int | None = None,
) -> DistributionResult | None:
    """Match an inquiry and distribute it; None when nobody matched."""
    partner_ids = await find_matching_partners(session, inquiry, limit)
    if not partner_ids:
        logger.warning(f"No matching partners found for inquiry {inquiry.id}")
        return None
    return await distribute_inquiry(session, inquiry.id, partner_ids)


async def create_inquiry(
    session: AsyncSession,
    *,
    client_id: str,
    category: ServiceCategory | str,
    city: str,
    state: str,
    event_date: date,
    event_time: str,
    duration_hours: float,
    venue: str | None = None,
    budget_min: float | None = None,
    budget_max: float | None = None,
    guest_count: int | None = None,
    requirements: str | None = None,
    fan_out_limit: int | None = None,
) -> InquiryCreation:
    """Persist a new inquiry, then try to distribute it to matching partners.

    Steps:
    1. Validate and persist the inquiry with status ``new``
    2. Find matching partners
    3. Distribute the lead (status ``assigned``)

    Steps 2 and 3 are best-effort: their errors are logged and swallowed.

    Args:
        session: Database session
        client_id: Requesting client reference
        category: Requested service category
        city: Event city
        state: Event state
        event_date: Event date
        event_time: Event start time
        duration_hours: Event duration (>= 1)
        venue: Event venue
        budget_min: Lower budget bound (paired with budget_max)
        budget_max: Upper budget bound (paired with budget_min)
        guest_count: Expected guests (>= 1)
        requirements: Free-text requirements
        fan_out_limit: Partners to offer the lead to (default from config)

    Returns:
        InquiryCreation with the stored inquiry and the distribution, if any

    Raises:
        ValueError: If a field is invalid
        DataAccessError: If the inquiry cannot be stored
    """
    city = normalize_whitespace(city)
    if not city:
        raise ValueError("City is required")
    _validate_budget(budget_min, budget_max)
    if duration_hours < 1:
        raise ValueError("Duration must be at least 1 hour")
    if guest_count is not None and guest_count < 1:
        raise ValueError("Guest count must be at least 1")
    if requirements and len(requirements) > MAX_REQUIREMENTS_LENGTH:
        raise ValueError(f"Requirements cannot exceed {MAX_REQUIREMENTS_LENGTH} characters")
    fan_out_limit = resolve_limit(fan_out_limit)

    inquiry = models.Inquiry(
        client_id=client_id,
        category=ServiceCategory(category),
        city=city,
        state=normalize_whitespace(state),
        venue=venue,
        budget_min=budget_min,
        budget_max=budget_max,
        event_date=event_date,
        event_time=event_time,
        duration_hours=duration_hours,
        guest_count=guest_count,
        requirements=requirements,
        status=InquiryStatus.NEW,
    )
    try:
        session.add(inquiry)
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(f"Failed to create inquiry for client {client_id}: {e}", exc_info=True)
        raise DataAccessError(f"Inquiry creation failed: {e}") from e

    inquiry_id = inquiry.id
    logger.info(f"Created inquiry {inquiry_id} ({inquiry.category.value}, {city})")

    distribution = None
    try:
        distribution = await distribute_matches(session, inquiry, fan_out_limit)
        if distribution:
            logger.info(
                f"Inquiry {inquiry_id} created and distributed to {distribution.assigned_count} partners"
            )
    except Exception as e:
        # Matching is best-effort; the inquiry stays in ``new``.
        await session.rollback()
        logger.error(f"Partner matching failed for inquiry {inquiry_id}: {e}", exc_info=True)

    inquiry = await get_inquiry_row(session, inquiry_id)
    return InquiryCreation(inquiry=inquiry, distribution=distribution)


async def get_inquiry(session: AsyncSession, inquiry_id: int) -> models.Inquiry:
    """Load an inquiry with its assignments."""
    return await get_inquiry_row(session, inquiry_id)


def _find_assignment(inquiry: models.Inquiry, partner_id: int) -> models.InquiryAssignment:
    for assignment in inquiry.assignments:
        if assignment.partner_id == partner_id:
            return assignment
    raise NotFoundError(
        "Assignment",
        partner_id,
        f"Inquiry {inquiry.id} is not assigned to partner {partner_id}",
    )


async def record_partner_response(
    session: AsyncSession,
    inquiry_id: int,
    partner_id: int,
    *,
    message: str,
    quotation: float,
) -> models.Inquiry:
    """Store an assigned partner's quote and mark the inquiry ``responded``.

    Raises:
        ValueError: If the message or quotation is invalid
        NotFoundError: If the inquiry is missing or not assigned to the partner
        InquiryStateError: If the inquiry no longer accepts responses
    """
    if not message or len(message) > MAX_RESPONSE_LENGTH:
        raise ValueError(f"Response message must be 1-{MAX_RESPONSE_LENGTH} characters")
    if quotation < 0:
        raise ValueError("Quotation cannot be negative")

    inquiry = await get_inquiry_row(session, inquiry_id)
    assignment = _find_assignment(inquiry, partner_id)
    ensure_transition(inquiry_id, inquiry.status, InquiryStatus.RESPONDED)

    assignment.response_message = message
    assignment.response_quotation = quotation
    assignment.responded_at = datetime.utcnow()
    inquiry.status = InquiryStatus.RESPONDED
    await _commit(session, "record response on", inquiry_id)

    logger.info(f"Partner {partner_id} responded to inquiry {inquiry_id}")
    return inquiry


async def select_partner(
    session: AsyncSession,
    inquiry_id: int,
    partner_id: int,
) -> models.Inquiry:
    """Book an assigned partner for the inquiry.

    Marks the assignment accepted and counts the booking on the partner.
    Only a partner that has responded with a quote can be booked.

    Raises:
        NotFoundError: If the inquiry is missing or not assigned to the partner
        InquiryStateError: If the inquiry cannot be booked from its status or
            the partner has not responded
    """
    inquiry = await get_inquiry_row(session, inquiry_id)
    assignment = _find_assignment(inquiry, partner_id)
    ensure_transition(inquiry_id, inquiry.status, InquiryStatus.BOOKED)
    if not assignment.has_response:
        raise InquiryStateError(f"Partner {partner_id} has not responded to inquiry {inquiry_id}")

    assignment.is_accepted = True
    inquiry.selected_partner_id = partner_id
    inquiry.status = InquiryStatus.BOOKED
    try:
        await session.execute(
            update(models.Partner)
            .where(models.Partner.id == partner_id)
            .values(total_bookings=models.Partner.total_bookings + 1)
            .execution_options(synchronize_session=False)
        )
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(f"Failed to count booking for partner {partner_id}: {e}", exc_info=True)
        raise DataAccessError(f"Failed to book partner {partner_id}: {e}") from e
    await _commit(session, "book", inquiry_id)

    logger.info(f"Inquiry {inquiry_id} booked with partner {partner_id}")
    return inquiry


async def cancel_inquiry(
    session: AsyncSession,
    inquiry_id: int,
    reason: str | None = None,
) -> models.Inquiry:
    """Cancel an inquiry that is not yet booked."""
    inquiry = await get_inquiry_row(session, inquiry_id)
    ensure_transition(inquiry_id, inquiry.status, InquiryStatus.CANCELLED)

    inquiry.status = InquiryStatus.CANCELLED
    inquiry.cancellation_reason = reason
    inquiry.cancelled_at = datetime.utcnow()
    await _commit(session, "cancel", inquiry_id)

    logger.info(f"Inquiry {inquiry_id} cancelled")
    return inquiry


async def close_inquiry(session: AsyncSession, inquiry_id: int) -> models.Inquiry:
    """Close a booked inquiry."""
    inquiry = await get_inquiry_row(session, inquiry_id)
    ensure_transition(inquiry_id, inquiry.status, InquiryStatus.CLOSED)

    inquiry.status = InquiryStatus.CLOSED
    await _commit(session, "close", inquiry_id)

    logger.info(f"Inquiry {inquiry_id} closed")
    return inquiry


async def list_partner_leads(
    session: AsyncSession,
    partner_id: int,
    status: InquiryStatus | None = None,
) -> list[models.Inquiry]:
    """Inquiries assigned to a partner, newest first."""
    await get_partner(session, partner_id)

    query = (
        select(models.Inquiry)
        .join(models.InquiryAssignment, models.InquiryAssignment.inquiry_id == models.Inquiry.id)
        .where(models.InquiryAssignment.partner_id == partner_id)
        .order_by(models.Inquiry.created_at.desc(), models.Inquiry.id.desc())
    )
    if status is not None:
        query = query.where(models.Inquiry.status == status)

    try:
        result = await session.execute(query)
        return list(result.scalars().all())
    except SQLAlchemyError as e:
        logger.error(f"Failed to list leads for partner {partner_id}: {e}", exc_info=True)
        raise DataAccessError(f"Failed to list leads: {e}") from e


@dataclass
class InquiryPage:
    """One page of a client's inquiries."""
    inquiries: list[models.Inquiry]
    total: int
    page: int
    page_size: int

    @property
    def pages(self) -> int:
        return -(-self.total // self.page_size)


async def list_client_inquiries(
    session: AsyncSession,
    client_id: str,
    status: InquiryStatus | None = None,
    page: int = 1,
    page_size: int = 10,
) -> InquiryPage:
    """A client's inquiries, newest first."""
    if page < 1 or page_size < 1:
        raise ValueError("page and page_size must be >= 1")

    filters = [models.Inquiry.client_id == client_id]
    if status is not None:
        filters.append(models.Inquiry.status == status)

    query = (
        select(models.Inquiry)
        .where(*filters)
        .order_by(models.Inquiry.created_at.desc(), models.Inquiry.id.desc())
        .limit(page_size)
        .offset((page - 1) * page_size)
    )

    try:
        total = await session.scalar(select(func.count(models.Inquiry.id)).where(*filters))
        result = await session.execute(query)
        return InquiryPage(
            inquiries=list(result.scalars().all()),
            total=total or 0,
            page=page,
            page_size=page_size,
        )
    except SQLAlchemyError as e:
        logger.error(f"Failed to list inquiries for client {client_id}: {e}", exc_info=True)
        raise DataAccessError(f"Failed to list inquiries: {e}") from e


# Fields that decided who the inquiry was matched to.
MATCHING_FIELDS = frozenset({"category", "city", "state", "budget_min", "budget_max"})
DETAIL_FIELDS = frozenset(
    {"venue", "event_date", "event_time", "duration_hours", "guest_count", "requirements"}
)


def _clean_changes(changes: Mapping[str, Any]) -> dict[str, Any]:
    unknown = set(changes) - MATCHING_FIELDS - DETAIL_FIELDS
    if unknown:
        raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")
    if not changes:
        raise ValueError("No fields to update")

    values = dict(changes)
    if ("budget_min" in values) != ("budget_max" in values):
        raise ValueError("Budget needs both min and max, or neither")
    if "budget_min" in values:
        _validate_budget(values["budget_min"], values["budget_max"])
    if "category" in values:
        values["category"] = ServiceCategory(values["category"])
    for key in ("city", "state"):
        if key in values:
            values[key] = normalize_whitespace(values[key] or "")
            if not values[key]:
                raise ValueError(f"{key.capitalize()} is required")
    for key in ("event_date", "event_time", "duration_hours"):
        if key in values and values[key] is None:
            raise ValueError(f"{key} cannot be cleared")
    if values.get("duration_hours") is not None and values["duration_hours"] < 1:
        raise ValueError("Duration must be at least 1 hour")
    if values.get("guest_count") is not None and values["guest_count"] < 1:
        raise ValueError("Guest count must be at least 1")
    if values.get("requirements") and len(values["requirements"]) > MAX_REQUIREMENTS_LENGTH:
        raise ValueError(f"Requirements cannot exceed {MAX_REQUIREMENTS_LENGTH} characters")
    return values


async def update_inquiry(
    session: AsyncSession,
    inquiry_id: int,
    client_id: str,
    changes: Mapping[str, Any],
) -> models.Inquiry:
    """Edit a client's inquiry before any partner has responded.

    Event details can change while the inquiry is ``new`` or ``assigned``.
    Category, location and budget decide matching, so they can only change
    while the inquiry is ``new``. The status check and the write are one
    conditional UPDATE.

    Raises:
        ValueError: If a field is unknown or invalid
        NotFoundError: If the inquiry does not exist or belongs to another client
        InquiryStateError: If the inquiry can no longer be edited
        DataAccessError: If the update fails
    """
    values = _clean_changes(changes)
    editable = [InquiryStatus.NEW]
    if not MATCHING_FIELDS & set(values):
        editable.append(InquiryStatus.ASSIGNED)

    try:
        updated = await session.execute(
            update(models.Inquiry)
            .where(
                models.Inquiry.id == inquiry_id,
                models.Inquiry.client_id == client_id,
                models.Inquiry.status.in_(editable),
            )
            .values(**values, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        if updated.rowcount == 0:
            row = (
                await session.execute(
                    select(models.Inquiry.client_id, models.Inquiry.status).where(
                        models.Inquiry.id == inquiry_id
                    )
                )
            ).one_or_none()
            if row is None or row.client_id != client_id:
                raise NotFoundError("Inquiry", inquiry_id)
            raise InquiryStateError(
                f"Inquiry {inquiry_id} is {row.status.value}; "
                f"{', '.join(sorted(values))} can only change while it is "
                f"{' or '.join(s.value for s in editable)}"
            )
        await session.commit()
    except (NotFoundError, InquiryStateError):
        await session.rollback()
        raise
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(f"Failed to update inquiry {inquiry_id}: {e}", exc_info=True)
        raise DataAccessError(f"Inquiry update failed: {e}") from e

    logger.info(f"Inquiry {inquiry_id} updated by client {client_id}: {sorted(values)}")
    return await get_inquiry_row(session, inquiry_id)
