"""FastAPI app with health, partner, and inquiry endpoints plus error handling.

Inquiry creation is wired to the matching and distribution pipeline.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import Literal

from fastapi import Depends, FastAPI, HTTPException, Query, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, model_validator
from sqlalchemy.ext.asyncio import AsyncSession

from . import models
from .config import settings
from .db import get_session
from .errors import DataAccessError, InquiryStateError, LeadEngineError, NotFoundError
from .lifecycle import ensure_transition
from .logging_config import setup_logging
from .models import InquiryStatus, ServiceCategory, VerificationStatus
from .pipelines import inquiries, partners
from .pipelines.distribution import check_partner_availability
from .pipelines.matching import get_inquiry_row, match_inquiry

logger = logging.getLogger(__name__)


# Pydantic request/response models
class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str


class ErrorResponse(BaseModel):
    """Error response."""
    error: str
    detail: str | None = None


class CreatePartnerRequest(BaseModel):
    """Create partner request."""
    business_name: str = Field(min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=1000)
    categories: list[ServiceCategory] = Field(min_length=1)
    experience_years: int = Field(ge=0, le=80)
    price_min: float = Field(ge=0)
    price_max: float = Field(ge=0)
    city: str = Field(min_length=1, max_length=120)
    state: str = Field(min_length=1, max_length=120)
    verification_status: VerificationStatus = VerificationStatus.PENDING
    rating_average: float = Field(default=0.0, ge=0, le=5)
    rating_count: int = Field(default=0, ge=0)
    is_featured: bool = False
    is_active: bool = True
    total_bookings: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def check_price_range(self) -> CreatePartnerRequest:
        if self.price_min > self.price_max:
            raise ValueError("price_min cannot be greater than price_max")
        return self


class PartnerDTO(BaseModel):
    """Partner data transfer object."""
    id: int
    business_name: str
    description: str | None
    categories: list[ServiceCategory]
    experience_years: int
    price_min: float
    price_max: float
    city: str
    state: str
    verification_status: VerificationStatus
    rating_average: float
    rating_count: int
    is_featured: bool
    is_active: bool
    total_bookings: int


class CreateInquiryRequest(BaseModel):
    """Create inquiry request."""
    client_id: str = Field(min_length=1, max_length=64)
    category: ServiceCategory
    city: str = Field(min_length=1, max_length=120)
    state: str = Field(min_length=1, max_length=120)
    venue: str | None = Field(default=None, max_length=255)
    budget_min: float | None = Field(default=None, ge=0)
    budget_max: float | None = Field(default=None, ge=0)
    event_date: date
    event_time: str = Field(min_length=1, max_length=20)
    duration_hours: float = Field(ge=1)
    guest_count: int | None = Field(default=None, ge=1)
    requirements: str | None = Field(default=None, max_length=1000)

    @model_validator(mode="after")
    def check_budget(self) -> CreateInquiryRequest:
        if (self.budget_min is None) != (self.budget_max is None):
            raise ValueError("budget_min and budget_max must be given together")
        if self.budget_min is not None and self.budget_min > self.budget_max:
            raise ValueError("budget_min cannot be greater than budget_max")
        return self


class PartnerQuoteDTO(BaseModel):
    """A partner's response to a lead."""
    message: str | None
    quotation: float | None
    responded_at: datetime


class AssignmentDTO(BaseModel):
    """Assignment data transfer object."""
    partner_id: int
    position: int
    assigned_at: datetime
    is_accepted: bool = False
    response: PartnerQuoteDTO | None = None


class InquiryDTO(BaseModel):
    """Inquiry data transfer object."""
    id: int
    client_id: str
    category: ServiceCategory
    city: str
    state: str
    venue: str | None
    budget_min: float | None
    budget_max: float | None
    event_date: date
    event_time: str
    duration_hours: float
    guest_count: int | None
    requirements: str | None
    status: InquiryStatus
    assignments: list[AssignmentDTO]
    selected_partner_id: int | None
    cancellation_reason: str | None
    created_at: datetime


class DistributionDTO(BaseModel):
    """Distribution summary."""
    assigned_count: int
    partner_ids: list[int]


class CreateInquiryResponse(BaseModel):
    """Create inquiry response."""
    status: str
    inquiry: InquiryDTO
    distribution: DistributionDTO | None
    message: str


class MatchRequest(BaseModel):
    """Match preview / distribution request."""
    limit: int | None = Field(default=None, ge=1, le=50)


class RuleTraceDTO(BaseModel):
    """Rule trace data transfer object."""
    rule_id: str
    status: str
    reason: str
    score_delta: float = 0.0


class MatchCandidateDTO(BaseModel):
    """Single ranked partner."""
    partner_id: int
    rank: int
    score: float
    rule_trace: list[RuleTraceDTO]


class MatchResponse(BaseModel):
    """Match preview response."""
    inquiry_id: int
    limit: int
    pool_size: int
    eligible_count: int
    matches: list[MatchCandidateDTO]
    computed_at: str


class DistributeResponse(BaseModel):
    """Distribution response."""
    status: str
    inquiry_id: int
    assigned_count: int
    partner_ids: list[int]
    message: str


class PartnerResponseRequest(BaseModel):
    """Partner response to a lead."""
    partner_id: int
    message: str = Field(min_length=1, max_length=500)
    quotation: float = Field(ge=0)


class SelectPartnerRequest(BaseModel):
    """Client selection of a partner."""
    partner_id: int


class CancelInquiryRequest(BaseModel):
    """Cancel inquiry request."""
    reason: str | None = Field(default=None, max_length=500)


class UpdateInquiryRequest(BaseModel):
    """Client edit of an inquiry; only the fields sent are changed."""
    client_id: str = Field(min_length=1, max_length=64)
    category: ServiceCategory | None = None
    city: str | None = Field(default=None, min_length=1, max_length=120)
    state: str | None = Field(default=None, min_length=1, max_length=120)
    venue: str | None = Field(default=None, max_length=255)
    budget_min: float | None = Field(default=None, ge=0)
    budget_max: float | None = Field(default=None, ge=0)
    event_date: date | None = None
    event_time: str | None = Field(default=None, min_length=1, max_length=20)
    duration_hours: float | None = Field(default=None, ge=1)
    guest_count: int | None = Field(default=None, ge=1)
    requirements: str | None = Field(default=None, max_length=1000)


class PartnerSearchResponse(BaseModel):
    """Paged partner directory results."""
    partners: list[PartnerDTO]
    total: int
    page: int
    pages: int


class InquiryListResponse(BaseModel):
    """Paged inquiry list."""
    inquiries: list[InquiryDTO]
    total: int
    page: int
    pages: int


class AvailabilityResponse(BaseModel):
    """Partner availability response."""
    partner_id: int
    event_date: date
    available: bool


def partner_dto(partner: models.Partner) -> PartnerDTO:
    return PartnerDTO(
        id=partner.id,
        business_name=partner.business_name,
        description=partner.description,
        categories=partner.category_values,
        experience_years=partner.experience_years,
        price_min=partner.price_min,
        price_max=partner.price_max,
        city=partner.city,
        state=partner.state,
        verification_status=partner.verification_status,
        rating_average=partner.rating_average,
        rating_count=partner.rating_count,
        is_featured=partner.is_featured,
        is_active=partner.is_active,
        total_bookings=partner.total_bookings,
    )


def inquiry_dto(inquiry: models.Inquiry) -> InquiryDTO:
    return InquiryDTO(
        id=inquiry.id,
        client_id=inquiry.client_id,
        category=inquiry.category,
        city=inquiry.city,
        state=inquiry.state,
        venue=inquiry.venue,
        budget_min=inquiry.budget_min,
        budget_max=inquiry.budget_max,
        event_date=inquiry.event_date,
        event_time=inquiry.event_time,
        duration_hours=inquiry.duration_hours,
        guest_count=inquiry.guest_count,
        requirements=inquiry.requirements,
        status=inquiry.status,
        assignments=[
            AssignmentDTO(
                partner_id=a.partner_id,
                position=a.position,
                assigned_at=a.assigned_at,
                is_accepted=a.is_accepted,
                response=PartnerQuoteDTO(
                    message=a.response_message,
                    quotation=a.response_quotation,
                    responded_at=a.responded_at,
                ) if a.has_response else None,
            )
            for a in inquiry.assignments
        ],
        selected_partner_id=inquiry.selected_partner_id,
        cancellation_reason=inquiry.cancellation_reason,
        created_at=inquiry.created_at,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown logic."""
    # Startup
    setup_logging()
    logger.info("Application starting up")

    yield

    # Shutdown
    logger.info("Application shutting down")


app = FastAPI(
    title="Photography Lead Matching",
    version=settings.version,
    description="Partner matching and lead distribution for photography inquiries",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Exception handlers
@app.exception_handler(NotFoundError)
async def not_found_handler(request, exc: NotFoundError):
    """Handle missing inquiries, partners, and assignments."""
    logger.warning(f"Not found: {exc}")
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content=ErrorResponse(error="not_found", detail=str(exc)).model_dump(),
    )


@app.exception_handler(InquiryStateError)
async def state_error_handler(request, exc: InquiryStateError):
    """Handle disallowed inquiry status transitions."""
    logger.warning(f"Invalid inquiry transition: {exc}")
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content=ErrorResponse(error="invalid_state", detail=str(exc)).model_dump(),
    )


@app.exception_handler(DataAccessError)
async def data_access_error_handler(request, exc: DataAccessError):
    """Handle database failures."""
    logger.error(f"Data access error: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(error="data_access_error", detail=str(exc)).model_dump(),
    )


@app.exception_handler(ValueError)
async def validation_error_handler(request, exc: ValueError):
    """Handle pipeline-level validation errors."""
    logger.warning(f"Validation error: {exc}")
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=ErrorResponse(error="validation_error", detail=str(exc)).model_dump(),
    )


def _internal_error(action: str, e: Exception) -> HTTPException:
    logger.error(f"Unexpected error {action}: {e}", exc_info=True)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Internal server error: {str(e)}",
    )


@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(
        status="ok",
        version=settings.version,
    )


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "app": settings.app_name,
        "version": settings.version,
        "endpoints": {
            "health": "/health",
            "partners": "/partners",
            "client_inquiries": "/clients/{client_id}/inquiries",
            "partner_leads": "/partners/{partner_id}/leads",
            "create_inquiry": "/inquiries",
            "match_preview": "/inquiries/{inquiry_id}/match",
            "distribute": "/inquiries/{inquiry_id}/distribute",
            "docs": "/docs",
        },
    }


@app.post(
    "/partners",
    response_model=PartnerDTO,
    status_code=status.HTTP_201_CREATED,
)
async def create_partner(
    request: CreatePartnerRequest,
    session: AsyncSession = Depends(get_session),
) -> PartnerDTO:
    """Register a partner profile."""
    logger.info(f"Registering partner: {request.business_name}")

    try:
        partner = await partners.register_partner(session, **request.model_dump())
        return partner_dto(partner)
    except (LeadEngineError, ValueError):
        raise
    except Exception as e:
        raise _internal_error("registering partner", e)


@app.get("/partners", response_model=PartnerSearchResponse)
async def search_partners(
    category: ServiceCategory | None = None,
    city: str | None = None,
    min_price: float | None = Query(default=None, ge=0),
    max_price: float | None = Query(default=None, ge=0),
    min_rating: float | None = Query(default=None, ge=0, le=5),
    featured: bool = False,
    sort_by: Literal["rating", "price", "experience", "bookings", "featured"] = "rating",
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=12, ge=1, le=100),
    session: AsyncSession = Depends(get_session),
) -> PartnerSearchResponse:
    """Browse verified, active partners with filters, sorting, and paging."""
    result = await partners.search_partners(
        session,
        category=category,
        city=city,
        price_min=min_price,
        price_max=max_price,
        min_rating=min_rating,
        featured_only=featured,
        sort_by=sort_by,
        page=page,
        page_size=page_size,
    )
    return PartnerSearchResponse(
        partners=[partner_dto(p) for p in result.partners],
        total=result.total,
        page=result.page,
        pages=result.pages,
    )


@app.get("/clients/{client_id}/inquiries", response_model=InquiryListResponse)
async def get_client_inquiries(
    client_id: str,
    status_filter: InquiryStatus | None = Query(default=None, alias="status"),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=10, ge=1, le=100),
    session: AsyncSession = Depends(get_session),
) -> InquiryListResponse:
    """A client's inquiries, newest first."""
    result = await inquiries.list_client_inquiries(session, client_id, status_filter, page, page_size)
    return InquiryListResponse(
        inquiries=[inquiry_dto(i) for i in result.inquiries],
        total=result.total,
        page=result.page,
        pages=result.pages,
    )


@app.get("/partners/{partner_id}", response_model=PartnerDTO)
async def get_partner(
    partner_id: int,
    session: AsyncSession = Depends(get_session),
) -> PartnerDTO:
    """Retrieve a partner profile."""
    partner = await partners.get_partner(session, partner_id)
    return partner_dto(partner)


@app.get("/partners/{partner_id}/leads", response_model=list[InquiryDTO])
async def get_partner_leads(
    partner_id: int,
    status_filter: InquiryStatus | None = Query(default=None, alias="status"),
    session: AsyncSession = Depends(get_session),
) -> list[InquiryDTO]:
    """Inquiries distributed to a partner, newest first."""
    leads = await inquiries.list_partner_leads(session, partner_id, status_filter)
    return [inquiry_dto(i) for i in leads]


@app.get("/partners/{partner_id}/availability", response_model=AvailabilityResponse)
async def get_partner_availability(
    partner_id: int,
    event_date: date,
    session: AsyncSession = Depends(get_session),
) -> AvailabilityResponse:
    """Availability of a partner on a date (always available until calendars exist)."""
    await partners.get_partner(session, partner_id)
    return AvailabilityResponse(
        partner_id=partner_id,
        event_date=event_date,
        available=check_partner_availability(partner_id, event_date),
    )


@app.post(
    "/inquiries",
    response_model=CreateInquiryResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_inquiry(
    request: CreateInquiryRequest,
    session: AsyncSession = Depends(get_session),
) -> CreateInquiryResponse:
    """Create an inquiry and distribute it to the best matching partners.

    This endpoint:
    1. Persists the inquiry
    2. Finds eligible partners and ranks them by score
    3. Assigns the top partners (best-effort; the inquiry is kept on failure)
    """
    logger.info(f"Creating inquiry: {request.category.value} in {request.city}")

    try:
        created = await inquiries.create_inquiry(session, **request.model_dump())
    except (LeadEngineError, ValueError):
        raise
    except Exception as e:
        raise _internal_error("creating inquiry", e)

    distribution = None
    if created.distribution:
        distribution = DistributionDTO(
            assigned_count=created.distribution.assigned_count,
            partner_ids=created.distribution.partner_ids,
        )
        message = f"Inquiry created and sent to {distribution.assigned_count} partners"
    else:
        message = "Inquiry created; no partners assigned yet"

    return CreateInquiryResponse(
        status="success",
        inquiry=inquiry_dto(created.inquiry),
        distribution=distribution,
        message=message,
    )


@app.get("/inquiries/{inquiry_id}", response_model=InquiryDTO)
async def get_inquiry(
    inquiry_id: int,
    session: AsyncSession = Depends(get_session),
) -> InquiryDTO:
    """Retrieve an inquiry with its assignments."""
    inquiry = await inquiries.get_inquiry(session, inquiry_id)
    return inquiry_dto(inquiry)


@app.put("/inquiries/{inquiry_id}", response_model=InquiryDTO)
async def update_inquiry(
    inquiry_id: int,
    request: UpdateInquiryRequest,
    session: AsyncSession = Depends(get_session),
) -> InquiryDTO:
    """Edit an inquiry that no partner has responded to yet."""
    changes = request.model_dump(exclude_unset=True)
    client_id = changes.pop("client_id")
    inquiry = await inquiries.update_inquiry(session, inquiry_id, client_id, changes)
    return inquiry_dto(inquiry)


@app.post("/inquiries/{inquiry_id}/match", response_model=MatchResponse)
async def preview_match(
    inquiry_id: int,
    request: MatchRequest = MatchRequest(),
    session: AsyncSession = Depends(get_session),
) -> MatchResponse:
    """Rank partners for an inquiry without distributing it.

    Returns each candidate's score with the per-rule trace.
    """
    logger.info(f"Previewing matches for inquiry {inquiry_id}")

    match = await match_inquiry(session, inquiry_id, request.limit)
    return MatchResponse(
        inquiry_id=match.inquiry_id,
        limit=match.limit,
        pool_size=match.pool_size,
        eligible_count=match.eligible_count,
        matches=[
            MatchCandidateDTO(
                partner_id=c.partner_id,
                rank=idx + 1,
                score=c.score,
                rule_trace=[
                    RuleTraceDTO(
                        rule_id=t.rule_id,
                        status=t.status.value,
                        reason=t.reason,
                        score_delta=t.score_delta,
                    )
                    for t in c.traces
                ],
            )
            for idx, c in enumerate(match.candidates)
        ],
        computed_at=match.computed_at.isoformat(),
    )


@app.post("/inquiries/{inquiry_id}/distribute", response_model=DistributeResponse)
async def distribute(
    inquiry_id: int,
    request: MatchRequest = MatchRequest(),
    session: AsyncSession = Depends(get_session),
) -> DistributeResponse:
    """Retry distribution for an inquiry still in ``new``."""
    inquiry = await get_inquiry_row(session, inquiry_id)
    ensure_transition(inquiry_id, inquiry.status, InquiryStatus.ASSIGNED)

    result = await inquiries.distribute_matches(session, inquiry, request.limit)
    if result is None:
        return DistributeResponse(
            status="no_match",
            inquiry_id=inquiry_id,
            assigned_count=0,
            partner_ids=[],
            message=f"No matching partners found for inquiry {inquiry_id}",
        )
    return DistributeResponse(
        status="success",
        inquiry_id=inquiry_id,
        assigned_count=result.assigned_count,
        partner_ids=result.partner_ids,
        message=f"Inquiry {inquiry_id} distributed to {result.assigned_count} partners",
    )


@app.post("/inquiries/{inquiry_id}/responses", response_model=InquiryDTO)
async def respond_to_inquiry(
    inquiry_id: int,
    request: PartnerResponseRequest,
    session: AsyncSession = Depends(get_session),
) -> InquiryDTO:
    """Record an assigned partner's quote."""
    inquiry = await inquiries.record_partner_response(
        session,
        inquiry_id,
        request.partner_id,
        message=request.message,
        quotation=request.quotation,
    )
    return inquiry_dto(inquiry)


@app.post("/inquiries/{inquiry_id}/select", response_model=InquiryDTO)
async def select_partner(
    inquiry_id: int,
    request: SelectPartnerRequest,
    session: AsyncSession = Depends(get_session),
) -> InquiryDTO:
    """Book one of the assigned partners."""
    inquiry = await inquiries.select_partner(session, inquiry_id, request.partner_id)
    return inquiry_dto(inquiry)


@app.post("/inquiries/{inquiry_id}/cancel", response_model=InquiryDTO)
async def cancel_inquiry(
    inquiry_id: int,
    request: CancelInquiryRequest = CancelInquiryRequest(),
    session: AsyncSession = Depends(get_session),
) -> InquiryDTO:
    """Cancel an inquiry that is not booked yet."""
    inquiry = await inquiries.cancel_inquiry(session, inquiry_id, request.reason)
    return inquiry_dto(inquiry)


@app.post("/inquiries/{inquiry_id}/close", response_model=InquiryDTO)
async def close_inquiry(
    inquiry_id: int,
    session: AsyncSession = Depends(get_session),
) -> InquiryDTO:
    """Close a booked inquiry."""
    inquiry = await inquiries.close_inquiry(session, inquiry_id)
    return inquiry_dto(inquiry)
