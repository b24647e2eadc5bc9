"""Core SQLAlchemy models (2.x style) for partners, inquiries, and assignments.

Enum columns persist the lowercase enum values ("verified", "real-estate", ...).
"""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum

from sqlalchemy import Boolean, CheckConstraint, Date, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class ServiceCategory(str, Enum):
    """Photography service types."""
    WEDDING = "wedding"
    MATERNITY = "maternity"
    PORTRAIT = "portrait"
    EVENT = "event"
    COMMERCIAL = "commercial"
    FASHION = "fashion"
    PRODUCT = "product"
    REAL_ESTATE = "real-estate"


class VerificationStatus(str, Enum):
    """Partner verification state."""
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


class InquiryStatus(str, Enum):
    """Inquiry lifecycle state."""
    NEW = "new"
    ASSIGNED = "assigned"
    RESPONDED = "responded"
    BOOKED = "booked"
    CLOSED = "closed"
    CANCELLED = "cancelled"


def _enum_column(enum_cls: type[Enum]) -> SAEnum:
    return SAEnum(
        enum_cls,
        native_enum=False,
        length=20,
        values_callable=lambda members: [m.value for m in members],
    )


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class Partner(Base):
    """Service provider profiles (the partner directory)."""
    __tablename__ = "partners"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    business_name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text)
    experience_years: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    price_min: Mapped[float] = mapped_column(Float, nullable=False)
    price_max: Mapped[float] = mapped_column(Float, nullable=False)
    city: Mapped[str] = mapped_column(String(120), nullable=False)
    # Lowercased in Python; SQL lower() is ASCII-only on some backends.
    city_key: Mapped[str] = mapped_column(String(120), nullable=False, index=True)
    state: Mapped[str] = mapped_column(String(120), nullable=False)
    verification_status: Mapped[VerificationStatus] = mapped_column(
        _enum_column(VerificationStatus),
        default=VerificationStatus.PENDING,
        nullable=False,
        index=True,
    )
    rating_average: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    rating_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_featured: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    total_bookings: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )

    # Relationships
    categories: Mapped[list[PartnerCategory]] = relationship(
        "PartnerCategory",
        back_populates="partner",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        CheckConstraint("price_min >= 0 AND price_min <= price_max", name="ck_partners_price_range"),
        CheckConstraint("rating_average >= 0 AND rating_average <= 5", name="ck_partners_rating"),
        CheckConstraint("experience_years >= 0", name="ck_partners_experience"),
        Index("ix_partners_directory_order", "is_featured", "rating_average", "total_bookings"),
    )

    @property
    def category_values(self) -> list[ServiceCategory]:
        return [c.category for c in self.categories]


class PartnerCategory(Base):
    """Service categories offered by a partner, one row per category."""
    __tablename__ = "partner_categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    partner_id: Mapped[int] = mapped_column(
        ForeignKey("partners.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    category: Mapped[ServiceCategory] = mapped_column(_enum_column(ServiceCategory), nullable=False, index=True)

    # Relationship
    partner: Mapped[Partner] = relationship("Partner", back_populates="categories")

    __table_args__ = (
        Index("ix_partner_categories_partner_category", "partner_id", "category", unique=True),
    )


class Inquiry(Base):
    """Client service requests."""
    __tablename__ = "inquiries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    client_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    category: Mapped[ServiceCategory] = mapped_column(_enum_column(ServiceCategory), nullable=False, index=True)
    city: Mapped[str] = mapped_column(String(120), nullable=False, index=True)
    state: Mapped[str] = mapped_column(String(120), nullable=False)
    venue: Mapped[str | None] = mapped_column(String(255))
    budget_min: Mapped[float | None] = mapped_column(Float)
    budget_max: Mapped[float | None] = mapped_column(Float)
    event_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    event_time: Mapped[str] = mapped_column(String(20), nullable=False)
    duration_hours: Mapped[float] = mapped_column(Float, nullable=False)
    guest_count: Mapped[int | None] = mapped_column(Integer)
    requirements: Mapped[str | None] = mapped_column(Text)
    status: Mapped[InquiryStatus] = mapped_column(
        _enum_column(InquiryStatus),
        default=InquiryStatus.NEW,
        nullable=False,
        index=True,
    )
    selected_partner_id: Mapped[int | None] = mapped_column(ForeignKey("partners.id", ondelete="SET NULL"))
    cancellation_reason: Mapped[str | None] = mapped_column(Text)
    cancelled_at: Mapped[datetime | None] = mapped_column()
    created_at: Mapped[datetime] = mapped_column(default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )

    # Relationships
    assignments: Mapped[list[InquiryAssignment]] = relationship(
        "InquiryAssignment",
        back_populates="inquiry",
        cascade="all, delete-orphan",
        order_by="InquiryAssignment.position",
        lazy="selectin",
    )

    __table_args__ = (
        CheckConstraint(
            "(budget_min IS NULL AND budget_max IS NULL) OR "
            "(budget_min >= 0 AND budget_min <= budget_max)",
            name="ck_inquiries_budget",
        ),
        CheckConstraint("duration_hours >= 1", name="ck_inquiries_duration"),
        Index("ix_inquiries_created_at", "created_at"),
    )

    @property
    def has_budget(self) -> bool:
        return self.budget_min is not None and self.budget_max is not None

    @property
    def assigned_partner_ids(self) -> list[int]:
        return [a.partner_id for a in self.assignments]


class InquiryAssignment(Base):
    """One partner's stake in an inquiry, with the optional partner response."""
    __tablename__ = "inquiry_assignments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    inquiry_id: Mapped[int] = mapped_column(
        ForeignKey("inquiries.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    partner_id: Mapped[int] = mapped_column(
        ForeignKey("partners.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    assigned_at: Mapped[datetime] = mapped_column(default=datetime.utcnow, nullable=False)
    response_message: Mapped[str | None] = mapped_column(String(500))
    response_quotation: Mapped[float | None] = mapped_column(Float)
    responded_at: Mapped[datetime | None] = mapped_column()
    is_accepted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Relationship
    inquiry: Mapped[Inquiry] = relationship("Inquiry", back_populates="assignments")

    __table_args__ = (
        Index("ix_inquiry_assignments_inquiry_partner", "inquiry_id", "partner_id", unique=True),
        Index("ix_inquiry_assignments_inquiry_position", "inquiry_id", "position"),
    )

    @property
    def has_response(self) -> bool:
        return self.responded_at is not None
