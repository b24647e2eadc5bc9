"""Lead distribution: commit a ranked partner selection onto an inquiry.

Distribution is a one-time transition. The inquiry status is switched from
``new`` to ``assigned`` by a conditional UPDATE, so a second run on the same
inquiry matches no row and fails instead of overwriting the first
assignment list.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Sequence

from sqlalchemy import delete, insert, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from leads import models
from leads.config import MAX_FAN_OUT_LIMIT
from leads.errors import DataAccessError, InquiryStateError, NotFoundError
from leads.models import InquiryStatus

logger = logging.getLogger(__name__)


@dataclass
class DistributionResult:
    """Outcome of a distribution."""
    inquiry_id: int
    assigned_count: int
    partner_ids: list[int]
    assigned_at: datetime


async def _ensure_partners_exist(session: AsyncSession, partner_ids: list[int]) -> None:
    result = await session.execute(select(models.Partner.id).where(models.Partner.id.in_(partner_ids)))
    found = set(result.scalars().all())
    for partner_id in partner_ids:
        if partner_id not in found:
            raise NotFoundError("Partner", partner_id)


async def distribute_inquiry(
    session: AsyncSession,
    inquiry_id: int,
    partner_ids: Sequence[int],
) -> DistributionResult:
    """Assign an inquiry to partners and mark it ``assigned``.

    The assignment list is replaced as a whole and the status update happens
    in the same transaction. On any failure the transaction is rolled back and
    the inquiry keeps status ``new`` with no assignments. The rollback expires
    every object loaded in ``session``; callers must re-query instead of
    reading attributes of objects they loaded before the call.

    Args:
        session: Database session
        inquiry_id: Inquiry to distribute
        partner_ids: Ordered, non-empty list of at most ``MAX_FAN_OUT_LIMIT`` partner ids

    Returns:
        DistributionResult with the assigned partner ids

    Raises:
        ValueError: If ``partner_ids`` is empty, too long or has duplicates
        NotFoundError: If the inquiry or a partner does not exist
        InquiryStateError: If the inquiry is no longer ``new``
        DataAccessError: If the database write fails
    """
    partner_ids = list(partner_ids)
    if not partner_ids:
        raise ValueError("partner_ids must not be empty")
    if len(partner_ids) > MAX_FAN_OUT_LIMIT:
        raise ValueError(f"An inquiry can go to at most {MAX_FAN_OUT_LIMIT} partners, got {len(partner_ids)}")
    if len(set(partner_ids)) != len(partner_ids):
        raise ValueError("partner_ids must not contain duplicates")

    assigned_at = datetime.utcnow()

    try:
        await _ensure_partners_exist(session, partner_ids)

        claim = await session.execute(
            update(models.Inquiry)
            .where(
                models.Inquiry.id == inquiry_id,
                models.Inquiry.status == InquiryStatus.NEW,
            )
            .values(status=InquiryStatus.ASSIGNED, updated_at=assigned_at)
            .execution_options(synchronize_session=False)
        )
        if claim.rowcount == 0:
            current = await session.scalar(
                select(models.Inquiry.status).where(models.Inquiry.id == inquiry_id)
            )
            if current is None:
                raise NotFoundError("Inquiry", inquiry_id)
            raise InquiryStateError(
                f"Inquiry {inquiry_id} is {current.value}; only new inquiries can be distributed"
            )

        await session.execute(
            delete(models.InquiryAssignment).where(models.InquiryAssignment.inquiry_id == inquiry_id)
        )
        await session.execute(
            insert(models.InquiryAssignment),
            [
                {
                    "inquiry_id": inquiry_id,
                    "partner_id": partner_id,
                    "position": position,
                    "assigned_at": assigned_at,
                    "is_accepted": False,
                }
                for position, partner_id in enumerate(partner_ids)
            ],
        )
        await session.commit()

    except (NotFoundError, InquiryStateError):
        await session.rollback()
        raise
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(f"Failed to distribute inquiry {inquiry_id}: {e}", exc_info=True)
        raise DataAccessError(f"Distribution failed: {e}") from e

    logger.info(f"Inquiry {inquiry_id} distributed to {len(partner_ids)} partners")

    return DistributionResult(
        inquiry_id=inquiry_id,
        assigned_count=len(partner_ids),
        partner_ids=partner_ids,
        assigned_at=assigned_at,
    )


def check_partner_availability(partner_id: int, event_date: date) -> bool:
    """Whether a partner is free on ``event_date``.

    Placeholder that always answers True. There is no booking calendar yet,
    so availability is not a matching constraint.
    """
    logger.debug(f"Availability check for partner {partner_id} on {event_date}: no calendar, assuming free")
    return True
