"""FastAPI admin API for motorcycle listings."""

import logging
import secrets
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, Field, field_validator

import config
import scheduler
from errors import (
    BadStatusError,
    ExtractionError,
    IngestError,
    InvalidTransitionError,
    MediaAcquisitionError,
    NotFoundError,
)
from models import Listing, PUBLISHED_STATUSES, STATUS_DRAFT, STATUSES
from services import Services, build_services

logger = logging.getLogger(__name__)

_services: Optional[Services] = None


def get_services() -> Services:
    global _services
    if _services is None:
        _services = build_services()
    return _services


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle."""
    services = get_services()
    scheduler.start_scheduler(services.assembler, services.conversations)
    yield
    scheduler.stop_scheduler()


app = FastAPI(title="Motorcycle Listings", lifespan=lifespan)
app.mount("/media", StaticFiles(directory=config.MEDIA_ROOT, check_dir=False), name="media")


def has_api_token(x_api_token: Optional[str]) -> bool:
    return bool(config.API_TOKEN and x_api_token
                and secrets.compare_digest(x_api_token, config.API_TOKEN))


def require_api_token(x_api_token: Optional[str] = Header(default=None)) -> None:
    """Mutating endpoints need the configured X-API-Token."""
    if not config.API_TOKEN:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin API is disabled")
    if not has_api_token(x_api_token):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API token")


@app.exception_handler(IngestError)
async def ingest_error_handler(request: Request, exc: IngestError):
    if isinstance(exc, NotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, InvalidTransitionError):
        code = status.HTTP_409_CONFLICT
    elif isinstance(exc, (BadStatusError, MediaAcquisitionError)):
        code = status.HTTP_502_BAD_GATEWAY
    elif isinstance(exc, ExtractionError):
        code = status.HTTP_422_UNPROCESSABLE_ENTITY
    else:
        logger.error(f"Unhandled ingest error on {request.url.path}: {exc}")
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    content = {"detail": str(exc), "stage": exc.stage}
    if exc.listing_id:
        content["listing_id"] = exc.listing_id
    return JSONResponse(status_code=code, content=content)


# ── Schemas ────────────────────────────────────────────────────

class PhotoOut(BaseModel):
    id: str
    url: str
    order: int
    created_at: datetime


class ListingOut(BaseModel):
    id: str
    title: str
    price: Decimal
    currency: str
    status: str
    source_url: str
    description: Optional[str] = None
    attributes: dict
    photos: list[PhotoOut]
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_listing(cls, listing: Listing) -> "ListingOut":
        return cls(
            id=listing.id,
            title=listing.title,
            price=listing.price,
            currency=listing.currency,
            status=listing.status,
            source_url=listing.source_url,
            description=listing.description,
            attributes=listing.attributes.as_dict(),
            photos=[PhotoOut(id=p.id, url=p.url, order=p.order, created_at=p.created_at)
                    for p in listing.photos],
            created_at=listing.created_at,
            updated_at=listing.updated_at,
        )


class CreateFromUrlRequest(BaseModel):
    url: str
    operator: Optional[str] = None


class ListingPatch(BaseModel):
    title: Optional[str] = None
    price: Optional[Decimal] = Field(default=None, gt=0, le=config.MAX_PRICE, decimal_places=2)
    currency: Optional[str] = None
    description: Optional[str] = None
    arrival_date: Optional[str] = Field(default=None, max_length=config.ARRIVAL_DATE_MAX_LENGTH)

    @field_validator("arrival_date")
    @classmethod
    def arrival_date_not_blank(cls, value):
        if value is not None and not value.strip():
            raise ValueError("arrival_date must not be blank")
        return value


class StatusUpdate(BaseModel):
    status: str


class AppendPhotosRequest(BaseModel):
    urls: list[str]


# ── Routes ─────────────────────────────────────────────────────

@app.get("/health")
def health():
    return {"status": "ok", "scheduler": scheduler.get_status()}


@app.get("/api/motorcycles", response_model=list[ListingOut])
def list_motorcycles(status_filter: Optional[str] = Query(default=None, alias="status"),
                     title: Optional[str] = None,
                     min_price: Optional[float] = None, max_price: Optional[float] = None,
                     x_api_token: Optional[str] = Header(default=None),
                     services: Services = Depends(get_services)):
    criteria = {
        "status": status_filter,
        "title": title,
        "min_price": min_price,
        "max_price": max_price,
    }
    # Drafts are only visible to admin token holders
    if not has_api_token(x_api_token):
        if status_filter == STATUS_DRAFT:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN,
                                detail="Draft listings require an API token")
        criteria["statuses"] = PUBLISHED_STATUSES
    return [ListingOut.from_listing(m) for m in services.assembler.list(criteria)]


@app.get("/api/motorcycles/{listing_id}", response_model=ListingOut)
def get_motorcycle(listing_id: str, x_api_token: Optional[str] = Header(default=None),
                   services: Services = Depends(get_services)):
    listing = services.assembler.get(listing_id)
    if listing.status == STATUS_DRAFT and not has_api_token(x_api_token):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Listing not found")
    return ListingOut.from_listing(listing)


@app.post("/api/motorcycles/from-url", response_model=ListingOut, status_code=201,
          dependencies=[Depends(require_api_token)])
def create_from_url(data: CreateFromUrlRequest, services: Services = Depends(get_services)):
    listing = services.assembler.create_from_url(data.operator or "api", data.url)
    return ListingOut.from_listing(listing)


@app.patch("/api/motorcycles/{listing_id}", response_model=ListingOut,
           dependencies=[Depends(require_api_token)])
def patch_motorcycle(listing_id: str, data: ListingPatch, services: Services = Depends(get_services)):
    fields = data.model_dump(exclude_none=True)
    if "arrival_date" in fields:
        fields["attributes"] = {"arrival_date": fields.pop("arrival_date")}
    if not fields:
        return ListingOut.from_listing(services.assembler.get(listing_id))
    return ListingOut.from_listing(services.assembler.patch(listing_id, fields))


@app.put("/api/motorcycles/{listing_id}/status", response_model=ListingOut,
         dependencies=[Depends(require_api_token)])
def update_status(listing_id: str, data: StatusUpdate, services: Services = Depends(get_services)):
    if data.status not in STATUSES:
        raise HTTPException(status_code=422, detail=f"Unknown status: {data.status}")
    return ListingOut.from_listing(services.assembler.set_status(listing_id, data.status))


@app.post("/api/motorcycles/{listing_id}/photos", response_model=ListingOut,
          dependencies=[Depends(require_api_token)])
def append_photos(listing_id: str, data: AppendPhotosRequest, services: Services = Depends(get_services)):
    services.assembler.get(listing_id)
    services.media.append(listing_id, data.urls)
    return ListingOut.from_listing(services.assembler.get(listing_id))


@app.delete("/api/motorcycles/{listing_id}", dependencies=[Depends(require_api_token)])
def delete_motorcycle(listing_id: str, services: Services = Depends(get_services)):
    deleted = services.assembler.delete(listing_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Listing not found")
    return {"ok": True, "id": listing_id}
