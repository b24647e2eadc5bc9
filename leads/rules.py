"""Eligibility and scoring rules for partner matching.

Hard rules decide whether a partner can serve an inquiry at all; soft rules
add points to an eligible partner's score. Every evaluation yields a
``RuleTrace`` so a ranking can be explained after the fact.

The functions here are pure: they work on ``PartnerFeatures`` and
``InquiryFeatures`` snapshots and never touch the database.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Callable, Iterable

from leads.config import ScoringWeights, settings
from leads.models import InquiryStatus, ServiceCategory, VerificationStatus

logger = logging.getLogger(__name__)


def normalize_whitespace(text: str) -> str:
    """Collapse runs of whitespace and strip the ends."""
    return re.sub(r"\s+", " ", text).strip()


def normalize_city(city: str) -> str:
    """Comparison key for city names: whitespace-normalized, lowercase."""
    return normalize_whitespace(city).lower()


class RuleStatus(str, Enum):
    """Rule evaluation status."""
    PASS = "PASS"
    FAIL = "FAIL"
    SKIP = "SKIP"


@dataclass
class RuleTrace:
    """Audit trace for a single rule evaluation."""
    rule_id: str
    status: RuleStatus
    reason: str
    score_delta: float = 0.0


@dataclass(frozen=True)
class PriceRange:
    """Closed price interval [min, max]."""
    min: float
    max: float

    def __post_init__(self) -> None:
        if self.min < 0 or self.max < 0:
            raise ValueError("Price range bounds cannot be negative")
        if self.min > self.max:
            raise ValueError(f"Price range min {self.min} exceeds max {self.max}")

    def overlaps(self, other: PriceRange) -> bool:
        return self.min <= other.max and self.max >= other.min

    def within(self, other: PriceRange) -> bool:
        """True when this range lies entirely inside ``other``."""
        return self.min >= other.min and self.max <= other.max


@dataclass(frozen=True)
class PartnerFeatures:
    """Read-only snapshot of a partner used by the rules."""
    partner_id: int
    categories: frozenset[ServiceCategory]
    experience_years: int
    price_range: PriceRange
    city: str
    state: str = ""
    verification_status: VerificationStatus = VerificationStatus.PENDING
    rating_average: float = 0.0
    rating_count: int = 0
    is_featured: bool = False
    total_bookings: int = 0
    is_active: bool = True


@dataclass(frozen=True)
class InquiryFeatures:
    """Read-only snapshot of an inquiry used by the rules."""
    inquiry_id: int | None
    category: ServiceCategory
    city: str
    state: str = ""
    budget: PriceRange | None = None
    event_date: date | None = None
    status: InquiryStatus = InquiryStatus.NEW

    def __post_init__(self) -> None:
        if not self.city or not self.city.strip():
            raise ValueError("Inquiry city is required")


@dataclass
class EligibilityResult:
    """Outcome of the hard rules for one partner."""
    partner_id: int
    eligible: bool
    traces: list[RuleTrace] = field(default_factory=list)


# Hard rules (eligibility)

def _require_verified(partner: PartnerFeatures, inquiry: InquiryFeatures) -> RuleTrace:
    if partner.verification_status == VerificationStatus.VERIFIED:
        return RuleTrace("verified", RuleStatus.PASS, "Partner is verified")
    return RuleTrace(
        "verified",
        RuleStatus.FAIL,
        f"Verification status is {partner.verification_status.value}",
    )


def _require_active(partner: PartnerFeatures, inquiry: InquiryFeatures) -> RuleTrace:
    if partner.is_active:
        return RuleTrace("active", RuleStatus.PASS, "Partner is active")
    return RuleTrace("active", RuleStatus.FAIL, "Partner is inactive")


def _require_category(partner: PartnerFeatures, inquiry: InquiryFeatures) -> RuleTrace:
    if inquiry.category in partner.categories:
        return RuleTrace("category", RuleStatus.PASS, f"Offers {inquiry.category.value}")
    return RuleTrace("category", RuleStatus.FAIL, f"Does not offer {inquiry.category.value}")


def _require_city(partner: PartnerFeatures, inquiry: InquiryFeatures) -> RuleTrace:
    if normalize_city(partner.city) == normalize_city(inquiry.city):
        return RuleTrace("city", RuleStatus.PASS, f"Located in {partner.city}")
    return RuleTrace("city", RuleStatus.FAIL, f"Located in {partner.city}, inquiry is in {inquiry.city}")


def _require_budget_overlap(partner: PartnerFeatures, inquiry: InquiryFeatures) -> RuleTrace:
    if inquiry.budget is None:
        return RuleTrace("budget", RuleStatus.SKIP, "Inquiry has no budget")
    if partner.price_range.overlaps(inquiry.budget):
        return RuleTrace("budget", RuleStatus.PASS, "Price range overlaps budget")
    return RuleTrace(
        "budget",
        RuleStatus.FAIL,
        f"Price range {partner.price_range.min:g}-{partner.price_range.max:g} "
        f"outside budget {inquiry.budget.min:g}-{inquiry.budget.max:g}",
    )


HARD_RULES: tuple[Callable[[PartnerFeatures, InquiryFeatures], RuleTrace], ...] = (
    _require_verified,
    _require_active,
    _require_category,
    _require_city,
    _require_budget_overlap,
)


def check_eligibility(partner: PartnerFeatures, inquiry: InquiryFeatures) -> EligibilityResult:
    """Evaluate the hard rules, stopping at the first failure."""
    traces = []
    for rule in HARD_RULES:
        trace = rule(partner, inquiry)
        traces.append(trace)
        if trace.status == RuleStatus.FAIL:
            return EligibilityResult(partner.partner_id, False, traces)
    return EligibilityResult(partner.partner_id, True, traces)


def is_eligible(partner: PartnerFeatures, inquiry: InquiryFeatures) -> bool:
    return check_eligibility(partner, inquiry).eligible


def filter_eligible(
    partners: Iterable[PartnerFeatures],
    inquiry: InquiryFeatures,
) -> list[PartnerFeatures]:
    """Return the eligible partners in input order."""
    eligible = []
    for partner in partners:
        result = check_eligibility(partner, inquiry)
        if result.eligible:
            eligible.append(partner)
        else:
            logger.debug(f"Partner {partner.partner_id} filtered: {result.traces[-1].reason}")
    return eligible


# Soft rules (scoring)

def _score_base(p: PartnerFeatures, i: InquiryFeatures, w: ScoringWeights) -> RuleTrace:
    return RuleTrace("base", RuleStatus.PASS, "Eligible partner", w.base)


def _score_featured(p: PartnerFeatures, i: InquiryFeatures, w: ScoringWeights) -> RuleTrace:
    if p.is_featured:
        return RuleTrace("featured", RuleStatus.PASS, "Featured partner", w.featured)
    return RuleTrace("featured", RuleStatus.PASS, "Not featured")


def _score_rating(p: PartnerFeatures, i: InquiryFeatures, w: ScoringWeights) -> RuleTrace:
    return RuleTrace(
        "rating",
        RuleStatus.PASS,
        f"Average rating {p.rating_average:g}",
        p.rating_average * w.rating_multiplier,
    )


def _score_experience(p: PartnerFeatures, i: InquiryFeatures, w: ScoringWeights) -> RuleTrace:
    bonus = min(p.experience_years * w.experience_per_year, w.experience_cap)
    return RuleTrace("experience", RuleStatus.PASS, f"{p.experience_years} years of experience", bonus)


def _score_same_city(p: PartnerFeatures, i: InquiryFeatures, w: ScoringWeights) -> RuleTrace:
    # Repeats the city hard rule on purpose; the bonus is part of the score contract.
    if normalize_city(p.city) == normalize_city(i.city):
        return RuleTrace("same_city", RuleStatus.PASS, f"Same city: {p.city}", w.same_city)
    return RuleTrace("same_city", RuleStatus.PASS, "Different city")


def _score_budget(p: PartnerFeatures, i: InquiryFeatures, w: ScoringWeights) -> RuleTrace:
    if i.budget is None:
        return RuleTrace("budget_fit", RuleStatus.SKIP, "Inquiry has no budget")
    if not p.price_range.overlaps(i.budget):
        return RuleTrace("budget_fit", RuleStatus.PASS, "No budget overlap")
    if p.price_range.within(i.budget):
        return RuleTrace(
            "budget_fit",
            RuleStatus.PASS,
            "Price range within budget",
            w.budget_overlap + w.budget_containment,
        )
    return RuleTrace("budget_fit", RuleStatus.PASS, "Price range overlaps budget", w.budget_overlap)


def _score_bookings(p: PartnerFeatures, i: InquiryFeatures, w: ScoringWeights) -> RuleTrace:
    bonus = min(p.total_bookings * w.booking_per_booking, w.booking_cap)
    return RuleTrace("bookings", RuleStatus.PASS, f"{p.total_bookings} completed bookings", bonus)


def _score_specialization(p: PartnerFeatures, i: InquiryFeatures, w: ScoringWeights) -> RuleTrace:
    count = len(p.categories)
    if count <= w.specialization_max_categories:
        return RuleTrace("specialization", RuleStatus.PASS, f"Specialized in {count} categories", w.specialization)
    return RuleTrace("specialization", RuleStatus.PASS, f"Offers {count} categories")


SOFT_RULES: tuple[Callable[[PartnerFeatures, InquiryFeatures, ScoringWeights], RuleTrace], ...] = (
    _score_base,
    _score_featured,
    _score_rating,
    _score_experience,
    _score_same_city,
    _score_budget,
    _score_bookings,
    _score_specialization,
)


def score_breakdown(
    partner: PartnerFeatures,
    inquiry: InquiryFeatures,
    weights: ScoringWeights | None = None,
) -> list[RuleTrace]:
    """Evaluate every soft rule for a partner that already passed eligibility."""
    if weights is None:
        weights = settings.scoring
    return [rule(partner, inquiry, weights) for rule in SOFT_RULES]


def score_partner(
    partner: PartnerFeatures,
    inquiry: InquiryFeatures,
    weights: ScoringWeights | None = None,
) -> float:
    """Additive affinity score; only meaningful relative to one ranking pass."""
    return sum(t.score_delta for t in score_breakdown(partner, inquiry, weights))
