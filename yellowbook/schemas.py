"""
Yellowbook Request Schemas

Pydantic models shared by the Directory API and the web front end.

Validated values are stored exactly as submitted: URLs and e-mail addresses
are checked for shape but never normalised.
"""

import re
from typing import Annotated, Literal, Optional

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
)
from pydantic.networks import HttpUrl

Category = Literal["restaurant", "store", "service", "technology", "healthcare"]
Role = Literal["user", "admin"]

_URL_ADAPTER = TypeAdapter(HttpUrl)
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s.]+$")

# Fields that feed the embedding text; changing one schedules re-embedding
EMBEDDED_FIELDS = frozenset({"name", "category", "description", "address"})

_REQUIRED_LISTING_FIELDS = ("name", "address", "phone", "category", "latitude", "longitude")


def _check_url(value: str) -> str:
    try:
        _URL_ADAPTER.validate_python(value)
    except ValidationError:
        raise ValueError("must be a well-formed http(s) URL")
    return value


def _check_email(value: str) -> str:
    if not _EMAIL_RE.match(value):
        raise ValueError("must be a well-formed e-mail address")
    return value


WebsiteUrl = Annotated[str, AfterValidator(_check_url)]
EmailAddress = Annotated[str, AfterValidator(_check_email)]


class ListingCreate(BaseModel):
    """Fields accepted by ``POST /yellow-books`` (no id or timestamps)."""

    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    address: str = Field(..., min_length=1, max_length=500)
    phone: str = Field(..., min_length=1, max_length=50)
    website: Optional[WebsiteUrl] = Field(None, max_length=1000)
    email: Optional[EmailAddress] = Field(None, max_length=320)
    category: Category
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    rating: Optional[float] = Field(None, ge=0, le=5)
    employees: Optional[str] = Field(None, max_length=50)
    founded: Optional[int] = None


class ListingUpdate(BaseModel):
    """Partial admin edit. Required listing fields may be changed but not cleared."""

    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    address: Optional[str] = Field(None, min_length=1, max_length=500)
    phone: Optional[str] = Field(None, min_length=1, max_length=50)
    website: Optional[WebsiteUrl] = Field(None, max_length=1000)
    email: Optional[EmailAddress] = Field(None, max_length=320)
    category: Optional[Category] = None
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    rating: Optional[float] = Field(None, ge=0, le=5)
    employees: Optional[str] = Field(None, max_length=50)
    founded: Optional[int] = None

    @field_validator(*_REQUIRED_LISTING_FIELDS, mode="before")
    @classmethod
    def _not_null(cls, value):
        if value is None:
            raise ValueError("cannot be cleared")
        return value


class RoleUpdate(BaseModel):
    role: Role


class BulkEmbeddingRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    business_ids: list[str] = Field(..., alias="businessIds", min_length=1, max_length=1000)

    @field_validator("business_ids")
    @classmethod
    def _non_blank_ids(cls, value: list[str]) -> list[str]:
        if any(not item.strip() for item in value):
            raise ValueError("ids must be non-empty strings")
        return value


class AISearchRequest(BaseModel):
    query: str = Field(..., min_length=1, max_length=500)

    @field_validator("query")
    @classmethod
    def _non_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("query must not be blank")
        return value.strip()
