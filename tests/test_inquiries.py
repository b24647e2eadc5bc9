import pytest

from leads.errors import DataAccessError, InquiryStateError, NotFoundError
from leads.models import InquiryStatus, ServiceCategory, VerificationStatus
from leads.pipelines import inquiries
from leads.pipelines.inquiries import (
    cancel_inquiry,
    close_inquiry,
    create_inquiry,
    get_inquiry,
    list_client_inquiries,
    list_partner_leads,
    record_partner_response,
    select_partner,
    update_inquiry,
)
from leads.pipelines.partners import register_partner


async def test_create_inquiry_distributes_to_matching_partners(session, make_partner, inquiry_fields):
    best = await make_partner(business_name="Best", is_featured=True)
    other = await make_partner(business_name="Other")
    await make_partner(business_name="Delhi", city="Delhi", state="Delhi")

    created = await create_inquiry(session, **inquiry_fields)

    assert created.inquiry.status == InquiryStatus.ASSIGNED
    assert created.inquiry.assigned_partner_ids == [best.id, other.id]
    assert created.distribution.assigned_count == 2


async def test_create_inquiry_respects_fan_out_limit(session, make_partner, inquiry_fields):
    for i in range(4):
        await make_partner(business_name=f"Studio {i}")

    created = await create_inquiry(session, fan_out_limit=2, **inquiry_fields)

    assert len(created.inquiry.assignments) == 2


async def test_create_inquiry_without_matches_stays_new(session, inquiry_fields):
    created = await create_inquiry(session, **inquiry_fields)

    assert created.inquiry.id is not None
    assert created.inquiry.status == InquiryStatus.NEW
    assert created.inquiry.assignments == []
    assert created.distribution is None


async def test_create_inquiry_survives_matching_failure(session, make_partner, inquiry_fields, monkeypatch):
    await make_partner()

    async def broken(*args, **kwargs):
        raise DataAccessError("directory unavailable")

    monkeypatch.setattr(inquiries, "find_matching_partners", broken)

    created = await create_inquiry(session, **inquiry_fields)

    assert created.inquiry.status == InquiryStatus.NEW
    assert created.distribution is None
    assert (await get_inquiry(session, created.inquiry.id)).status == InquiryStatus.NEW


async def test_create_inquiry_normalizes_city(session, make_partner, inquiry_fields):
    partner = await make_partner()
    inquiry_fields["city"] = "  Mumbai  "

    created = await create_inquiry(session, **inquiry_fields)

    assert created.inquiry.city == "Mumbai"
    assert created.inquiry.assigned_partner_ids == [partner.id]


@pytest.mark.parametrize(
    "overrides",
    [
        {"city": "   "},
        {"budget_min": 50000, "budget_max": None},
        {"budget_min": 80000, "budget_max": 20000},
        {"duration_hours": 0.5},
        {"guest_count": 0},
        {"requirements": "x" * 1001},
        {"fan_out_limit": 0},
    ],
)
async def test_create_inquiry_validates_input(session, inquiry_fields, overrides):
    inquiry_fields.update(overrides)
    with pytest.raises(ValueError):
        await create_inquiry(session, **inquiry_fields)


async def test_create_inquiry_without_budget_matches_any_price(session, make_partner, inquiry_fields):
    partner = await make_partner(price_min=500000, price_max=900000)
    inquiry_fields.update(budget_min=None, budget_max=None)

    created = await create_inquiry(session, **inquiry_fields)

    assert created.inquiry.assigned_partner_ids == [partner.id]


async def test_full_lifecycle_counts_booking(session, make_partner, inquiry_fields):
    partner = await make_partner(total_bookings=3)
    created = await create_inquiry(session, **inquiry_fields)
    inquiry_id = created.inquiry.id

    inquiry = await record_partner_response(
        session, inquiry_id, partner.id, message="Happy to help", quotation=45000
    )
    assert inquiry.status == InquiryStatus.RESPONDED
    assert inquiry.assignments[0].response_quotation == 45000
    assert inquiry.assignments[0].has_response

    inquiry = await select_partner(session, inquiry_id, partner.id)
    assert inquiry.status == InquiryStatus.BOOKED
    assert inquiry.selected_partner_id == partner.id
    assert inquiry.assignments[0].is_accepted

    await session.refresh(partner)
    assert partner.total_bookings == 4

    inquiry = await close_inquiry(session, inquiry_id)
    assert inquiry.status == InquiryStatus.CLOSED


async def test_response_from_unassigned_partner_is_rejected(session, make_partner, inquiry_fields):
    await make_partner()
    stranger = await make_partner(business_name="Stranger", city="Delhi", state="Delhi")
    created = await create_inquiry(session, **inquiry_fields)

    with pytest.raises(NotFoundError):
        await record_partner_response(
            session, created.inquiry.id, stranger.id, message="Hi", quotation=1000
        )


async def test_response_needs_assigned_inquiry(session, inquiry_fields):
    created = await create_inquiry(session, **inquiry_fields)
    with pytest.raises(NotFoundError):
        await record_partner_response(session, created.inquiry.id, 1, message="Hi", quotation=1000)


async def test_response_validates_message(session, make_partner, inquiry_fields):
    partner = await make_partner()
    created = await create_inquiry(session, **inquiry_fields)

    with pytest.raises(ValueError):
        await record_partner_response(session, created.inquiry.id, partner.id, message="", quotation=1000)
    with pytest.raises(ValueError):
        await record_partner_response(session, created.inquiry.id, partner.id, message="ok", quotation=-1)


async def test_booking_requires_a_response(session, make_partner, inquiry_fields):
    partner = await make_partner()
    created = await create_inquiry(session, **inquiry_fields)

    with pytest.raises(InquiryStateError):
        await select_partner(session, created.inquiry.id, partner.id)


async def test_booking_a_partner_who_never_responded_is_rejected(session, make_partner, inquiry_fields):
    responder = await make_partner(business_name="Responder")
    silent = await make_partner(business_name="Silent")
    created = await create_inquiry(session, **inquiry_fields)
    inquiry_id, responder_id, silent_id = created.inquiry.id, responder.id, silent.id
    await record_partner_response(session, inquiry_id, responder_id, message="Free that day", quotation=30000)

    with pytest.raises(InquiryStateError):
        await select_partner(session, inquiry_id, silent_id)

    inquiry = await get_inquiry(session, inquiry_id)
    assert inquiry.status == InquiryStatus.RESPONDED
    assert inquiry.selected_partner_id is None
    assert not any(a.is_accepted for a in inquiry.assignments)


async def test_cancel_records_reason(session, make_partner, inquiry_fields):
    await make_partner()
    created = await create_inquiry(session, **inquiry_fields)

    inquiry = await cancel_inquiry(session, created.inquiry.id, "Event postponed")

    assert inquiry.status == InquiryStatus.CANCELLED
    assert inquiry.cancellation_reason == "Event postponed"
    assert inquiry.cancelled_at is not None


async def test_booked_inquiry_cannot_be_cancelled(session, make_partner, inquiry_fields):
    partner = await make_partner()
    created = await create_inquiry(session, **inquiry_fields)
    await record_partner_response(session, created.inquiry.id, partner.id, message="Hi", quotation=1)
    await select_partner(session, created.inquiry.id, partner.id)

    with pytest.raises(InquiryStateError):
        await cancel_inquiry(session, created.inquiry.id)


async def test_close_requires_booking(session, inquiry_fields):
    created = await create_inquiry(session, **inquiry_fields)
    with pytest.raises(InquiryStateError):
        await close_inquiry(session, created.inquiry.id)


async def test_get_inquiry_unknown(session):
    with pytest.raises(NotFoundError):
        await get_inquiry(session, 12345)


async def test_list_partner_leads_filters_by_status(session, make_partner, inquiry_fields):
    partner = await make_partner()
    first = await create_inquiry(session, **inquiry_fields)
    second = await create_inquiry(session, **inquiry_fields)
    await cancel_inquiry(session, first.inquiry.id)

    leads = await list_partner_leads(session, partner.id)
    assigned = await list_partner_leads(session, partner.id, InquiryStatus.ASSIGNED)

    assert {i.id for i in leads} == {first.inquiry.id, second.inquiry.id}
    assert [i.id for i in assigned] == [second.inquiry.id]


async def test_list_partner_leads_unknown_partner(session):
    with pytest.raises(NotFoundError):
        await list_partner_leads(session, 777)


async def test_register_partner_dedupes_categories(session):
    partner = await register_partner(
        session,
        business_name="Dup",
        categories=["wedding", ServiceCategory.WEDDING, "event"],
        experience_years=1,
        price_min=100,
        price_max=200,
        city=" New   Delhi ",
        state="Delhi",
        verification_status="verified",
    )

    assert partner.category_values == [ServiceCategory.WEDDING, ServiceCategory.EVENT]
    assert partner.city == "New Delhi"
    assert partner.verification_status == VerificationStatus.VERIFIED


@pytest.mark.parametrize(
    "overrides",
    [
        {"categories": []},
        {"categories": ["drone"]},
        {"experience_years": -1},
        {"price_min": 500, "price_max": 100},
        {"rating_average": 5.5},
    ],
)
async def test_register_partner_validates_input(session, overrides):
    fields = {
        "business_name": "Bad",
        "categories": ["wedding"],
        "experience_years": 1,
        "price_min": 100,
        "price_max": 200,
        "city": "Mumbai",
        "state": "Maharashtra",
    }
    fields.update(overrides)
    with pytest.raises(ValueError):
        await register_partner(session, **fields)


async def test_list_client_inquiries_newest_first(session, inquiry_fields):
    older = await create_inquiry(session, **inquiry_fields)
    newer = await create_inquiry(session, **inquiry_fields)
    await create_inquiry(session, **{**inquiry_fields, "client_id": "client-2"})

    page = await list_client_inquiries(session, "client-1")

    assert page.total == 2
    assert [i.id for i in page.inquiries] == [newer.inquiry.id, older.inquiry.id]


async def test_list_client_inquiries_filters_and_pages(session, make_partner, inquiry_fields):
    first = await create_inquiry(session, **inquiry_fields)
    await make_partner()
    second = await create_inquiry(session, **inquiry_fields)
    third = await create_inquiry(session, **inquiry_fields)

    assigned = await list_client_inquiries(session, "client-1", InquiryStatus.ASSIGNED, page_size=1)
    still_new = await list_client_inquiries(session, "client-1", InquiryStatus.NEW)

    assert assigned.total == 2
    assert assigned.pages == 2
    assert [i.id for i in assigned.inquiries] == [third.inquiry.id]
    assert [i.id for i in still_new.inquiries] == [first.inquiry.id]
    assert second.inquiry.id not in [i.id for i in still_new.inquiries]


async def test_list_client_inquiries_unknown_client_is_empty(session):
    page = await list_client_inquiries(session, "nobody")
    assert page.inquiries == []
    assert page.pages == 0


async def test_update_new_inquiry_can_change_matching_fields(session, inquiry_fields):
    created = await create_inquiry(session, **inquiry_fields)

    inquiry = await update_inquiry(
        session,
        created.inquiry.id,
        "client-1",
        {"city": "  Pune ", "category": "event", "budget_min": 10000, "budget_max": 20000},
    )

    assert inquiry.status == InquiryStatus.NEW
    assert inquiry.city == "Pune"
    assert inquiry.category == ServiceCategory.EVENT
    assert (inquiry.budget_min, inquiry.budget_max) == (10000, 20000)


async def test_update_assigned_inquiry_details(session, make_partner, inquiry_fields):
    partner = await make_partner()
    created = await create_inquiry(session, **inquiry_fields)

    inquiry = await update_inquiry(
        session, created.inquiry.id, "client-1", {"venue": "Beach Lawn", "guest_count": 80}
    )

    assert inquiry.status == InquiryStatus.ASSIGNED
    assert inquiry.venue == "Beach Lawn"
    assert inquiry.guest_count == 80
    assert inquiry.assigned_partner_ids == [partner.id]


async def test_update_assigned_inquiry_cannot_move_city(session, make_partner, inquiry_fields):
    await make_partner()
    created = await create_inquiry(session, **inquiry_fields)
    inquiry_id = created.inquiry.id

    # The failed update rolls back, expiring everything loaded in the session.
    with pytest.raises(InquiryStateError):
        await update_inquiry(session, inquiry_id, "client-1", {"city": "Delhi", "venue": "Somewhere"})

    inquiry = await get_inquiry(session, inquiry_id)
    assert inquiry.city == "Mumbai"
    assert inquiry.venue == "Grand Ballroom"


async def test_update_after_response_is_rejected(session, make_partner, inquiry_fields):
    partner = await make_partner()
    created = await create_inquiry(session, **inquiry_fields)
    inquiry_id, partner_id = created.inquiry.id, partner.id
    await record_partner_response(session, inquiry_id, partner_id, message="Sure", quotation=30000)

    with pytest.raises(InquiryStateError):
        await update_inquiry(session, inquiry_id, "client-1", {"guest_count": 10})

    assert (await get_inquiry(session, inquiry_id)).guest_count == 200


async def test_update_by_another_client_is_not_found(session, inquiry_fields):
    created = await create_inquiry(session, **inquiry_fields)
    inquiry_id = created.inquiry.id

    with pytest.raises(NotFoundError):
        await update_inquiry(session, inquiry_id, "client-2", {"venue": "Hijacked"})
    with pytest.raises(NotFoundError):
        await update_inquiry(session, 9999, "client-1", {"venue": "Nowhere"})

    assert (await get_inquiry(session, inquiry_id)).venue == "Grand Ballroom"


@pytest.mark.parametrize(
    "changes",
    [
        {},
        {"status": "booked"},
        {"client_id": "client-2"},
        {"budget_min": 1000},
        {"budget_min": 5000, "budget_max": 1000},
        {"city": " "},
        {"event_date": None},
        {"duration_hours": 0},
        {"category": "drone"},
    ],
)
async def test_update_inquiry_validates_changes(session, inquiry_fields, changes):
    created = await create_inquiry(session, **inquiry_fields)
    with pytest.raises(ValueError):
        await update_inquiry(session, created.inquiry.id, "client-1", changes)
