"""Partner directory writes and lookups.

Verification is recorded as given; the review workflow that sets it lives
outside this service.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from leads import models
from leads.errors import DataAccessError, NotFoundError
from leads.models import ServiceCategory, VerificationStatus
from leads.rules import PriceRange, normalize_city, normalize_whitespace

logger = logging.getLogger(__name__)


async def register_partner(
    session: AsyncSession,
    *,
    business_name: str,
    categories: Iterable[ServiceCategory | str],
    experience_years: int,
    price_min: float,
    price_max: float,
    city: str,
    state: str,
    description: str | None = None,
    verification_status: VerificationStatus | str = VerificationStatus.PENDING,
    rating_average: float = 0.0,
    rating_count: int = 0,
    is_featured: bool = False,
    is_active: bool = True,
    total_bookings: int = 0,
) -> models.Partner:
    """Create a partner profile.

    Raises:
        ValueError: If a field is out of range
        DataAccessError: If the insert fails
    """
    unique_categories = list(dict.fromkeys(ServiceCategory(c) for c in categories))
    if not unique_categories:
        raise ValueError("A partner must offer at least one category")
    if experience_years < 0:
        raise ValueError("Experience cannot be negative")
    if not 0 <= rating_average <= 5:
        raise ValueError("Rating average must be between 0 and 5")
    if rating_count < 0 or total_bookings < 0:
        raise ValueError("Counts cannot be negative")
    PriceRange(price_min, price_max)

    city = normalize_whitespace(city)
    if not city:
        raise ValueError("City is required")

    partner = models.Partner(
        business_name=business_name,
        description=description,
        experience_years=experience_years,
        price_min=price_min,
        price_max=price_max,
        city=city,
        city_key=normalize_city(city),
        state=normalize_whitespace(state),
        verification_status=VerificationStatus(verification_status),
        rating_average=rating_average,
        rating_count=rating_count,
        is_featured=is_featured,
        is_active=is_active,
        total_bookings=total_bookings,
        categories=[models.PartnerCategory(category=c) for c in unique_categories],
    )

    try:
        session.add(partner)
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(f"Failed to register partner {business_name}: {e}", exc_info=True)
        raise DataAccessError(f"Partner registration failed: {e}") from e

    logger.info(f"Registered partner {partner.id}: {business_name} ({city})")
    return partner


PARTNER_SORTS = {
    "rating": (models.Partner.rating_average.desc(), models.Partner.rating_count.desc()),
    "price": (models.Partner.price_min.asc(),),
    "experience": (models.Partner.experience_years.desc(),),
    "bookings": (models.Partner.total_bookings.desc(),),
    "featured": (models.Partner.is_featured.desc(), models.Partner.rating_average.desc()),
}


@dataclass
class PartnerPage:
    """One page of directory search results."""
    partners: list[models.Partner]
    total: int
    page: int
    page_size: int

    @property
    def pages(self) -> int:
        return -(-self.total // self.page_size)


async def search_partners(
    session: AsyncSession,
    *,
    category: ServiceCategory | str | None = None,
    city: str | None = None,
    price_min: float | None = None,
    price_max: float | None = None,
    min_rating: float | None = None,
    featured_only: bool = False,
    sort_by: str = "rating",
    page: int = 1,
    page_size: int = 12,
) -> PartnerPage:
    """Browse verified, active partners.

    ``city`` matches any part of the city name, case-insensitively.
    ``price_min`` / ``price_max`` keep partners whose price range lies inside
    the given bounds.

    Raises:
        ValueError: If the sort key or paging is invalid
        DataAccessError: If the query fails
    """
    if sort_by not in PARTNER_SORTS:
        raise ValueError(f"sort_by must be one of {', '.join(PARTNER_SORTS)}, got {sort_by!r}")
    if page < 1 or page_size < 1:
        raise ValueError("page and page_size must be >= 1")

    filters = [
        models.Partner.verification_status == VerificationStatus.VERIFIED,
        models.Partner.is_active.is_(True),
    ]
    if category is not None:
        category = ServiceCategory(category)
        filters.append(models.Partner.categories.any(models.PartnerCategory.category == category))
    if city and normalize_city(city):
        filters.append(models.Partner.city_key.contains(normalize_city(city), autoescape=True))
    if price_min is not None:
        filters.append(models.Partner.price_min >= price_min)
    if price_max is not None:
        filters.append(models.Partner.price_max <= price_max)
    if min_rating is not None:
        filters.append(models.Partner.rating_average >= min_rating)
    if featured_only:
        filters.append(models.Partner.is_featured.is_(True))

    query = (
        select(models.Partner)
        .where(*filters)
        .order_by(*PARTNER_SORTS[sort_by], models.Partner.id.asc())
        .limit(page_size)
        .offset((page - 1) * page_size)
    )

    try:
        total = await session.scalar(select(func.count(models.Partner.id)).where(*filters))
        result = await session.execute(query)
        partners = list(result.scalars().all())
    except SQLAlchemyError as e:
        logger.error(f"Partner search failed: {e}", exc_info=True)
        raise DataAccessError(f"Partner search failed: {e}") from e

    logger.info(f"Partner search matched {total} partners (sort={sort_by}, page={page})")
    return PartnerPage(partners=partners, total=total or 0, page=page, page_size=page_size)


async def get_partner(session: AsyncSession, partner_id: int) -> models.Partner:
    """Load a partner by id.

    Raises:
        NotFoundError: If the partner does not exist
        DataAccessError: If the query fails
    """
    try:
        result = await session.execute(select(models.Partner).where(models.Partner.id == partner_id))
        partner = result.scalar_one_or_none()
    except SQLAlchemyError as e:
        logger.error(f"Failed to load partner {partner_id}: {e}", exc_info=True)
        raise DataAccessError(f"Failed to load partner {partner_id}: {e}") from e

    if partner is None:
        raise NotFoundError("Partner", partner_id)
    return partner
