"""
Database Schemas for the Global Tracker

Each Pydantic model describes the documents of one MongoDB collection, or the
body accepted by one endpoint. Stored field names are the API field names
(camelCase); the models use snake_case attributes with camelCase aliases.

Collections: "country", "company", "person", "user", "session", "activity".
"""
from datetime import datetime
from typing import Annotated, List, Literal, Optional

from bson import ObjectId
from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    field_validator,
)
from pydantic.alias_generators import to_camel


def _check_object_id(v: str) -> str:
    if not ObjectId.is_valid(v):
        raise ValueError("must be a valid id")
    return v


ObjectIdStr = Annotated[str, AfterValidator(_check_object_id)]


def _required_text(v):
    if v is None:
        return v
    v = str(v).strip()
    if not v:
        raise ValueError("is required")
    return v


def _optional_text(v):
    if isinstance(v, str):
        return v.strip()
    return v


def _as_list(v):
    if v is None:
        return []
    if isinstance(v, str):
        return [v]
    return v


def _lower_text(v):
    v = _optional_text(v)
    return v.lower() if isinstance(v, str) else v


def _not_future_year(v):
    if v is not None and v > datetime.now().year:
        raise ValueError("cannot be in the future")
    return v


def _unique(items: List[str]) -> List[str]:
    seen = []
    for item in items:
        if item and item not in seen:
            seen.append(item)
    return seen


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------- Country ----------------------------

class Country(CamelModel):
    """
    Countries collection schema
    Collection: "country"
    """
    name: str = Field(..., description="Country name, unique")
    code: str = Field(..., min_length=2, max_length=3, description="ISO-like code, unique, uppercase")
    region: Optional[str] = None
    capital: Optional[str] = None
    population: Optional[int] = Field(None, ge=0)
    is_active: bool = True

    @field_validator("name", mode="before")
    @classmethod
    def _name(cls, v):
        return _required_text(v)

    @field_validator("code", mode="before")
    @classmethod
    def _code(cls, v):
        v = _required_text(v)
        return v.upper() if v else v

    @field_validator("region", "capital", mode="before")
    @classmethod
    def _strip(cls, v):
        return _optional_text(v)


class CountryUpdate(CamelModel):
    name: Optional[str] = None
    code: Optional[str] = Field(None, min_length=2, max_length=3)
    region: Optional[str] = None
    capital: Optional[str] = None
    population: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None

    _name = field_validator("name", mode="before")(_required_text)
    _strip = field_validator("region", "capital", mode="before")(_optional_text)

    @field_validator("code", mode="before")
    @classmethod
    def _code(cls, v):
        v = _required_text(v)
        return v.upper() if v else v


# ---------------------------- Company ----------------------------

class Revenue(BaseModel):
    amount: Optional[float] = None
    currency: str = "USD"


class Company(CamelModel):
    """
    Companies collection schema
    Collection: "company"
    """
    name: str
    country: ObjectIdStr = Field(..., description="Country id")
    industry: Optional[str] = None
    website: Optional[str] = None
    founded_year: Optional[int] = Field(None, ge=1800)
    employee_count: Optional[int] = Field(None, ge=1)
    revenue: Optional[Revenue] = None
    is_active: bool = True
    ip_addresses: List[str] = Field(default_factory=list)
    subdomains: List[str] = Field(default_factory=list)

    @field_validator("name", mode="before")
    @classmethod
    def _name(cls, v):
        return _required_text(v)

    @field_validator("industry", mode="before")
    @classmethod
    def _strip(cls, v):
        return _optional_text(v)

    _website = field_validator("website", mode="before")(_lower_text)
    _founded_year = field_validator("founded_year")(_not_future_year)

    @field_validator("ip_addresses", mode="before")
    @classmethod
    def _ips(cls, v):
        return _unique([str(ip).strip() for ip in _as_list(v)])

    @field_validator("subdomains", mode="before")
    @classmethod
    def _subdomains(cls, v):
        return _unique([str(s).strip().lower() for s in _as_list(v)])


class CompanyUpdate(CamelModel):
    name: Optional[str] = None
    country: Optional[ObjectIdStr] = None
    industry: Optional[str] = None
    website: Optional[str] = None
    founded_year: Optional[int] = Field(None, ge=1800)
    employee_count: Optional[int] = Field(None, ge=1)
    revenue: Optional[Revenue] = None
    is_active: Optional[bool] = None

    _name = field_validator("name", mode="before")(_required_text)
    _website = field_validator("website", mode="before")(_lower_text)
    _founded_year = field_validator("founded_year")(_not_future_year)


class IpAddressPayload(BaseModel):
    ip_address: str = Field(..., alias="ipAddress")

    _ip = field_validator("ip_address", mode="before")(_required_text)


class SubdomainPayload(BaseModel):
    subdomain: str

    @field_validator("subdomain", mode="before")
    @classmethod
    def _subdomain(cls, v):
        v = _required_text(v)
        return v.lower() if v else v


# ---------------------------- Person ----------------------------

class Person(CamelModel):
    """
    People collection schema
    Collection: "person"
    """
    first_name: str
    last_name: str
    email: EmailStr
    phone: Optional[str] = None
    position: Optional[str] = None
    company: ObjectIdStr = Field(..., description="Company id")
    country: ObjectIdStr = Field(..., description="Country id")
    city: Optional[str] = None
    department: Optional[str] = None
    is_active: bool = True
    last_active: Optional[datetime] = None
    notes: Optional[str] = None
    photo: Optional[str] = None
    bio: Optional[str] = None

    @field_validator("first_name", "last_name", mode="before")
    @classmethod
    def _names(cls, v):
        return _required_text(v)

    _email = field_validator("email", mode="before")(_lower_text)

    @field_validator("phone", "position", "city", "department", "notes", "photo", "bio", mode="before")
    @classmethod
    def _strip(cls, v):
        return _optional_text(v)


class PersonUpdate(CamelModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    position: Optional[str] = None
    company: Optional[ObjectIdStr] = None
    country: Optional[ObjectIdStr] = None
    city: Optional[str] = None
    department: Optional[str] = None
    notes: Optional[str] = None
    last_active: Optional[datetime] = None
    photo: Optional[str] = None
    bio: Optional[str] = None
    is_active: Optional[bool] = None

    _names = field_validator("first_name", "last_name", mode="before")(_required_text)
    _email = field_validator("email", mode="before")(_lower_text)


class PersonStatus(CamelModel):
    is_active: bool


# ---------------------------- Users & auth ----------------------------

Role = Literal["admin", "user"]


class User(CamelModel):
    """
    Users collection schema (auth principals)
    Collection: "user"
    """
    first_name: str
    last_name: str
    email: EmailStr
    role: Role = "user"
    photo: str = "no-photo.jpg"


class UserCreate(CamelModel):
    first_name: str
    last_name: str
    email: EmailStr
    password: str = Field(..., min_length=6)
    role: Role = "user"

    _names = field_validator("first_name", "last_name", mode="before")(_required_text)
    _email = field_validator("email", mode="before")(_lower_text)


class UserUpdate(CamelModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[EmailStr] = None
    role: Optional[Role] = None
    password: Optional[str] = Field(None, min_length=6)

    _email = field_validator("email", mode="before")(_lower_text)


class RegisterPayload(CamelModel):
    first_name: str
    last_name: str
    email: EmailStr
    password: str = Field(..., min_length=6)

    _names = field_validator("first_name", "last_name", mode="before")(_required_text)
    _email = field_validator("email", mode="before")(_lower_text)


class LoginPayload(BaseModel):
    email: EmailStr
    password: str

    _email = field_validator("email", mode="before")(_lower_text)


class UpdateDetailsPayload(CamelModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[EmailStr] = None

    _email = field_validator("email", mode="before")(_lower_text)


class ChangePasswordPayload(CamelModel):
    current_password: str = ""
    new_password: str = ""
    confirm_password: str = ""


class AuthUser(BaseModel):
    id: str
    firstName: str
    lastName: str
    email: EmailStr
    role: str
    photo: Optional[str] = None


class AuthResponse(BaseModel):
    success: bool = True
    token: str
    user: AuthUser


# ---------------------------- Activity ----------------------------

class Activity(BaseModel):
    """
    Dashboard activity feed, append only
    Collection: "activity"
    """
    type: str = Field(..., description="e.g. company:create, person:delete")
    user: Optional[str] = Field(None, description="Actor id or email")
    timestamp: datetime
    details: Optional[str] = None
    visible: bool = True
    priority: int = 0
    meta: Optional[dict] = None
