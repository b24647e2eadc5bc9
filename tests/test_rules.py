import pytest

from leads.config import ScoringWeights
from leads.models import ServiceCategory, VerificationStatus
from leads.rules import (
    InquiryFeatures,
    PartnerFeatures,
    PriceRange,
    RuleStatus,
    check_eligibility,
    filter_eligible,
    is_eligible,
    normalize_city,
    score_breakdown,
    score_partner,
)


def make_partner(partner_id=1, **overrides) -> PartnerFeatures:
    fields = {
        "partner_id": partner_id,
        "categories": frozenset({ServiceCategory.WEDDING}),
        "experience_years": 5,
        "price_range": PriceRange(20000, 60000),
        "city": "Mumbai",
        "verification_status": VerificationStatus.VERIFIED,
        "rating_average": 4.5,
        "is_featured": True,
        "total_bookings": 12,
    }
    fields.update(overrides)
    return PartnerFeatures(**fields)


@pytest.fixture
def inquiry():
    return InquiryFeatures(
        inquiry_id=1,
        category=ServiceCategory.WEDDING,
        city="Mumbai",
        budget=PriceRange(25000, 75000),
    )


def deltas(traces):
    return {t.rule_id: t.score_delta for t in traces}


# Eligibility

def test_eligible_partner_passes_every_hard_rule(inquiry):
    result = check_eligibility(make_partner(), inquiry)

    assert result.eligible
    assert [t.rule_id for t in result.traces] == ["verified", "active", "category", "city", "budget"]
    assert all(t.status == RuleStatus.PASS for t in result.traces)


@pytest.mark.parametrize(
    "overrides, failed_rule",
    [
        ({"verification_status": VerificationStatus.PENDING}, "verified"),
        ({"verification_status": VerificationStatus.REJECTED}, "verified"),
        ({"is_active": False}, "active"),
        ({"categories": frozenset({ServiceCategory.PORTRAIT})}, "category"),
        ({"city": "Delhi"}, "city"),
        ({"price_range": PriceRange(80000, 120000)}, "budget"),
        ({"price_range": PriceRange(5000, 20000)}, "budget"),
    ],
)
def test_ineligible_partner_stops_at_first_failed_rule(inquiry, overrides, failed_rule):
    result = check_eligibility(make_partner(**overrides), inquiry)

    assert not result.eligible
    assert result.traces[-1].rule_id == failed_rule
    assert result.traces[-1].status == RuleStatus.FAIL


def test_budget_rule_skipped_without_budget():
    inquiry = InquiryFeatures(inquiry_id=1, category=ServiceCategory.WEDDING, city="Mumbai")
    result = check_eligibility(make_partner(price_range=PriceRange(500000, 900000)), inquiry)

    assert result.eligible
    assert result.traces[-1].status == RuleStatus.SKIP


def test_budget_touching_at_boundary_overlaps(inquiry):
    assert is_eligible(make_partner(price_range=PriceRange(75000, 90000)), inquiry)
    assert is_eligible(make_partner(price_range=PriceRange(10000, 25000)), inquiry)


def test_city_comparison_ignores_case_and_spacing(inquiry):
    assert is_eligible(make_partner(city="  mumbai "), inquiry)
    assert normalize_city("New   Delhi ") == "new delhi"


def test_partner_in_other_city_is_excluded_regardless_of_score(inquiry):
    star = make_partner(2, city="Delhi", rating_average=5.0, experience_years=30, total_bookings=500)
    plain = make_partner(3, is_featured=False, rating_average=1.0)

    eligible = filter_eligible([star, plain], inquiry)

    assert [p.partner_id for p in eligible] == [3]


def test_filter_eligible_keeps_input_order(inquiry):
    partners = [make_partner(i) for i in (5, 2, 9)]
    assert [p.partner_id for p in filter_eligible(partners, inquiry)] == [5, 2, 9]


def test_inquiry_requires_city():
    with pytest.raises(ValueError):
        InquiryFeatures(inquiry_id=1, category=ServiceCategory.WEDDING, city="   ")


def test_price_range_rejects_inverted_bounds():
    with pytest.raises(ValueError):
        PriceRange(100, 50)
    with pytest.raises(ValueError):
        PriceRange(-1, 50)


# Scoring

def test_score_of_featured_mumbai_partner(inquiry):
    # 20000 < 25000 so the price range is not contained in the budget: no +5.
    traces = score_breakdown(make_partner(), inquiry)

    assert deltas(traces) == {
        "base": 10,
        "featured": 20,
        "rating": 22.5,
        "experience": 10,
        "same_city": 15,
        "budget_fit": 10,
        "bookings": 10,
        "specialization": 5,
    }
    assert score_partner(make_partner(), inquiry) == pytest.approx(102.5)


def test_contained_price_range_adds_containment_bonus(inquiry):
    partner = make_partner(price_range=PriceRange(30000, 70000))
    assert deltas(score_breakdown(partner, inquiry))["budget_fit"] == 15


def test_no_budget_gives_no_budget_bonus():
    inquiry = InquiryFeatures(inquiry_id=1, category=ServiceCategory.WEDDING, city="Mumbai")
    traces = score_breakdown(make_partner(), inquiry)
    budget = next(t for t in traces if t.rule_id == "budget_fit")

    assert budget.status == RuleStatus.SKIP
    assert budget.score_delta == 0


def test_experience_and_bookings_are_capped(inquiry):
    partner = make_partner(experience_years=40, total_bookings=300)
    result = deltas(score_breakdown(partner, inquiry))

    assert result["experience"] == 20
    assert result["bookings"] == 10


def test_specialization_bonus_needs_three_or_fewer_categories(inquiry):
    three = make_partner(categories=frozenset(list(ServiceCategory)[:3]))
    four = make_partner(categories=frozenset(list(ServiceCategory)[:4]))

    assert deltas(score_breakdown(three, inquiry))["specialization"] == 5
    assert deltas(score_breakdown(four, inquiry))["specialization"] == 0


def test_minimal_partner_scores_at_least_base(inquiry):
    partner = make_partner(
        is_featured=False,
        rating_average=0.0,
        experience_years=0,
        total_bookings=0,
        categories=frozenset(ServiceCategory),
    )
    assert score_partner(partner, inquiry) >= 10


def test_custom_weights_change_the_score(inquiry):
    weights = ScoringWeights(featured=0, same_city=0)
    assert score_partner(make_partner(), inquiry, weights) == pytest.approx(102.5 - 35)
