"""Seed the database with sample partners and one distributed inquiry.

Five studios across five cities; the first three are verified and the
first two featured. Run ``init_db.py`` first.
"""

import asyncio
import sys
from datetime import date, timedelta

from leads.db import AsyncSessionMaker, engine
from leads.logging_config import setup_logging
from leads.models import ServiceCategory, VerificationStatus
from leads.pipelines.inquiries import create_inquiry
from leads.pipelines.partners import register_partner

CITIES = [
    ("Mumbai", "Maharashtra"),
    ("Delhi", "Delhi"),
    ("Bangalore", "Karnataka"),
    ("Chennai", "Tamil Nadu"),
    ("Kolkata", "West Bengal"),
]


async def seed():
    async with AsyncSessionMaker() as session:
        for i, (city, state) in enumerate(CITIES, start=1):
            partner = await register_partner(
                session,
                business_name=f"Photography Studio {i}",
                description=f"Professional photography services with {i + 2} years of experience",
                categories=[ServiceCategory.WEDDING, ServiceCategory.PORTRAIT, ServiceCategory.EVENT],
                experience_years=i + 2,
                price_min=10000 + i * 5000,
                price_max=50000 + i * 10000,
                city=city,
                state=state,
                verification_status=VerificationStatus.VERIFIED if i <= 3 else VerificationStatus.PENDING,
                rating_average=round(3.5 + i * 0.3, 1),
                rating_count=i * 10,
                is_featured=i <= 2,
                total_bookings=i * 5,
            )
            print(f"✓ Partner {partner.id}: {partner.business_name} ({city})")

        created = await create_inquiry(
            session,
            client_id="client-1",
            category=ServiceCategory.WEDDING,
            city="Mumbai",
            state="Maharashtra",
            venue="Grand Ballroom, Hotel Taj",
            budget_min=25000,
            budget_max=75000,
            event_date=date.today() + timedelta(days=30),
            event_time="18:00",
            duration_hours=8,
            guest_count=200,
            requirements="Looking for a professional wedding photographer with experience in Indian weddings",
        )
        inquiry = created.inquiry
        print(f"✓ Inquiry {inquiry.id}: {inquiry.status.value}, partners {inquiry.assigned_partner_ids}")


async def main():
    setup_logging(fmt="text")
    try:
        await seed()
    except Exception as e:
        print(f"\n❌ Error seeding data: {e}")
        sys.exit(1)
    finally:
        await engine.dispose()
    print("\n✅ Seed data created")


if __name__ == "__main__":
    asyncio.run(main())
