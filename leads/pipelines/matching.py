"""Matching pipeline: Inquiry → Partners with directory retrieval and rule-based scoring.

Workflow:
1. Query the partner directory for a candidate pool (verified, active,
   category, city, price overlap) in directory order
2. Re-apply the eligibility rules to the snapshots
3. Score every eligible partner
4. Stable-sort by score and keep the fan-out limit
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from leads import models
from leads.config import MAX_FAN_OUT_LIMIT, ScoringWeights, settings
from leads.errors import DataAccessError, NotFoundError
from leads.models import VerificationStatus
from leads.rules import (
    InquiryFeatures,
    PartnerFeatures,
    PriceRange,
    RuleTrace,
    filter_eligible,
    normalize_city,
    score_breakdown,
)

logger = logging.getLogger(__name__)


@dataclass
class MatchCandidate:
    """A partner paired with its score for one matching run."""
    partner: PartnerFeatures
    score: float
    traces: list[RuleTrace] = field(default_factory=list)

    @property
    def partner_id(self) -> int:
        return self.partner.partner_id


@dataclass
class InquiryMatch:
    """Ranked candidates for an inquiry."""
    inquiry_id: int
    limit: int
    pool_size: int
    eligible_count: int
    candidates: list[MatchCandidate]
    computed_at: datetime

    @property
    def partner_ids(self) -> list[int]:
        return [c.partner_id for c in self.candidates]


def partner_features(partner: models.Partner) -> PartnerFeatures:
    """Build the rule snapshot for a partner row."""
    return PartnerFeatures(
        partner_id=partner.id,
        categories=frozenset(partner.category_values),
        experience_years=partner.experience_years or 0,
        price_range=PriceRange(partner.price_min, partner.price_max),
        city=partner.city,
        state=partner.state,
        verification_status=partner.verification_status,
        rating_average=partner.rating_average or 0.0,
        rating_count=partner.rating_count or 0,
        is_featured=partner.is_featured,
        total_bookings=partner.total_bookings or 0,
        is_active=partner.is_active,
    )


def inquiry_features(inquiry: models.Inquiry) -> InquiryFeatures:
    """Build the rule snapshot for an inquiry row."""
    budget = PriceRange(inquiry.budget_min, inquiry.budget_max) if inquiry.has_budget else None
    return InquiryFeatures(
        inquiry_id=inquiry.id,
        category=inquiry.category,
        city=inquiry.city,
        state=inquiry.state,
        budget=budget,
        event_date=inquiry.event_date,
        status=inquiry.status,
    )


def resolve_limit(limit: int | None) -> int:
    limit = settings.matching.fan_out_limit if limit is None else limit
    if not 1 <= limit <= MAX_FAN_OUT_LIMIT:
        raise ValueError(f"Fan-out limit must be between 1 and {MAX_FAN_OUT_LIMIT}, got {limit}")
    return limit


async def load_candidate_pool(
    session: AsyncSession,
    inquiry: InquiryFeatures,
    pool_size: int | None = None,
) -> list[PartnerFeatures]:
    """Query the partner directory for structurally eligible partners.

    Results come back in directory order: featured first, then by rating,
    bookings, newest profile, and id.

    Args:
        session: Database session
        inquiry: Inquiry snapshot
        pool_size: Maximum partners to load (default from config)

    Returns:
        List of partner snapshots in directory order

    Raises:
        DataAccessError: If the query fails
    """
    pool_size = pool_size or settings.matching.candidate_pool_size

    query = select(models.Partner).where(
        models.Partner.verification_status == VerificationStatus.VERIFIED,
        models.Partner.is_active.is_(True),
        models.Partner.city_key == normalize_city(inquiry.city),
        models.Partner.categories.any(models.PartnerCategory.category == inquiry.category),
    )
    if inquiry.budget is not None:
        query = query.where(
            models.Partner.price_min <= inquiry.budget.max,
            models.Partner.price_max >= inquiry.budget.min,
        )
    query = query.order_by(
        models.Partner.is_featured.desc(),
        models.Partner.rating_average.desc(),
        models.Partner.total_bookings.desc(),
        models.Partner.created_at.desc(),
        models.Partner.id.asc(),
    ).limit(pool_size)

    try:
        result = await session.execute(query)
        partners = result.scalars().all()
    except SQLAlchemyError as e:
        logger.error(f"Partner directory query failed for inquiry {inquiry.inquiry_id}: {e}", exc_info=True)
        raise DataAccessError(f"Failed to load partners: {e}") from e

    logger.info(f"Loaded {len(partners)} partners for inquiry {inquiry.inquiry_id} (pool={pool_size})")
    return [partner_features(p) for p in partners]


def score_candidates(
    partners: Iterable[PartnerFeatures],
    inquiry: InquiryFeatures,
    weights: ScoringWeights | None = None,
) -> list[MatchCandidate]:
    """Score partners that already passed eligibility, keeping their order."""
    candidates = []
    for partner in partners:
        traces = score_breakdown(partner, inquiry, weights)
        candidates.append(
            MatchCandidate(
                partner=partner,
                score=sum(t.score_delta for t in traces),
                traces=traces,
            )
        )
    return candidates


def rank_candidates(candidates: list[MatchCandidate], limit: int) -> list[MatchCandidate]:
    """Order by score descending and keep the first ``limit``.

    ``sorted`` is stable, also with ``reverse=True``: equal scores keep the
    order the candidates arrived in.
    """
    if limit < 1:
        raise ValueError(f"Fan-out limit must be >= 1, got {limit}")
    ranked = sorted(candidates, key=lambda c: c.score, reverse=True)
    return ranked[:limit]


def select_partners(
    partners: Iterable[PartnerFeatures],
    inquiry: InquiryFeatures,
    limit: int | None = None,
    weights: ScoringWeights | None = None,
) -> list[MatchCandidate]:
    """Filter, score, and rank an in-memory partner population."""
    limit = resolve_limit(limit)
    eligible = filter_eligible(partners, inquiry)
    return rank_candidates(score_candidates(eligible, inquiry, weights), limit)


def _as_features(inquiry: models.Inquiry | InquiryFeatures) -> InquiryFeatures:
    if isinstance(inquiry, InquiryFeatures):
        return inquiry
    return inquiry_features(inquiry)


async def find_matching_partners(
    session: AsyncSession,
    inquiry: models.Inquiry | InquiryFeatures,
    limit: int | None = None,
    *,
    weights: ScoringWeights | None = None,
) -> list[int]:
    """Return the ids of the best partners for an inquiry, best first.

    May return fewer than ``limit`` ids, or none. Raises only when the
    directory cannot be read.

    Args:
        session: Database session
        inquiry: Inquiry row or snapshot
        limit: Fan-out limit (default from config)
        weights: Scoring weights (default from config)

    Returns:
        Ordered list of partner ids

    Raises:
        DataAccessError: If the partner directory query fails
    """
    features = _as_features(inquiry)
    limit = resolve_limit(limit)

    pool = await load_candidate_pool(session, features)
    selected = select_partners(pool, features, limit, weights)

    if not selected:
        logger.warning(f"No matching partners found for inquiry {features.inquiry_id}")
    else:
        logger.info(
            f"Matched inquiry {features.inquiry_id}: "
            f"{[(c.partner_id, c.score) for c in selected]}"
        )
    return [c.partner_id for c in selected]


async def get_inquiry_row(session: AsyncSession, inquiry_id: int) -> models.Inquiry:
    """Load an inquiry with fresh assignments.

    Raises:
        NotFoundError: If the inquiry does not exist
        DataAccessError: If the query fails
    """
    query = (
        select(models.Inquiry)
        .where(models.Inquiry.id == inquiry_id)
        .execution_options(populate_existing=True)
    )
    try:
        result = await session.execute(query)
        inquiry = result.scalar_one_or_none()
    except SQLAlchemyError as e:
        logger.error(f"Failed to load inquiry {inquiry_id}: {e}", exc_info=True)
        raise DataAccessError(f"Failed to load inquiry {inquiry_id}: {e}") from e

    if inquiry is None:
        raise NotFoundError("Inquiry", inquiry_id)
    return inquiry


async def match_inquiry(
    session: AsyncSession,
    inquiry_id: int,
    limit: int | None = None,
    *,
    weights: ScoringWeights | None = None,
) -> InquiryMatch:
    """Compute the ranked candidates for a stored inquiry without distributing.

    Raises:
        NotFoundError: If the inquiry does not exist
        DataAccessError: If a query fails
    """
    limit = resolve_limit(limit)
    inquiry = await get_inquiry_row(session, inquiry_id)
    features = inquiry_features(inquiry)

    pool = await load_candidate_pool(session, features)
    eligible = filter_eligible(pool, features)
    candidates = rank_candidates(score_candidates(eligible, features, weights), limit)

    return InquiryMatch(
        inquiry_id=inquiry_id,
        limit=limit,
        pool_size=len(pool),
        eligible_count=len(eligible),
        candidates=candidates,
        computed_at=datetime.utcnow(),
    )
