from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import Optional, List
from enum import Enum

from route_service import is_valid_coordinate


class UserRole(str, Enum):
    DRIVER = "driver"
    CUSTOMER = "customer"
    ADMIN = "admin"


class ConnectRequestStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    HOLD = "hold"


class RespondAction(str, Enum):
    ACCEPT = "accept"
    REJECT = "reject"


class TransactionKind(str, Enum):
    CREDIT = "credit"
    DEBIT = "debit"


class BandTableKind(str, Enum):
    LEAD_TOKENS = "lead-tokens"
    TRIP_TOKENS = "trip-tokens"
    LEAD_PRICING = "lead-pricing"
    TRIP_PRICING = "trip-pricing"

    @property
    def is_currency(self) -> bool:
        return self in (BandTableKind.LEAD_PRICING, BandTableKind.TRIP_PRICING)


class Actor(BaseModel):
    """Authenticated caller, resolved once per request by the identity layer."""
    id: str
    role: UserRole


# Geo Models
class GeoPoint(BaseModel):
    address: Optional[str] = None
    coordinates: List[float]  # [lng, lat]

    @field_validator('coordinates')
    @classmethod
    def validate_coordinates(cls, v):
        if len(v) != 2:
            raise ValueError('coordinates must be a [lng, lat] pair')
        if not is_valid_coordinate(v[0], v[1]):
            raise ValueError('coordinates out of range: lng in [-180, 180], lat in [-90, 90]')
        return v

    @property
    def lng(self) -> float:
        return self.coordinates[0]

    @property
    def lat(self) -> float:
        return self.coordinates[1]


# Distance Band Models
class DistanceBandCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_km: float = Field(ge=0, alias="fromKm")
    to_km: float = Field(alias="toKm")
    cost: int = Field(ge=0)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    is_active: bool = Field(default=True, alias="isActive")

    @model_validator(mode='after')
    def validate_interval(self):
        if self.to_km <= self.from_km:
            raise ValueError('toKm must be greater than fromKm')
        return self


class DistanceBandUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_km: Optional[float] = Field(default=None, ge=0, alias="fromKm")
    to_km: Optional[float] = Field(default=None, alias="toKm")
    cost: Optional[int] = Field(default=None, ge=0)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)


# Wallet Models
class WalletAdjust(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    driver_id: str = Field(alias="driverId")
    amount: int = Field(ge=1)
    reason: str = Field(min_length=1, max_length=200)


# Token Plan Models
class TokenPlanCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(min_length=3, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    tokens_amount: int = Field(ge=1, alias="tokensAmount")
    price_minor: int = Field(ge=0, alias="priceMinor")
    currency: str = Field(default="INR", min_length=3, max_length=3)


class TokenPlanUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = Field(default=None, min_length=3, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    tokens_amount: Optional[int] = Field(default=None, ge=1, alias="tokensAmount")
    price_minor: Optional[int] = Field(default=None, ge=0, alias="priceMinor")
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)


class TokenPurchase(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    plan_id: str = Field(alias="planId")


class FreeTokenSettingsUpsert(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tokens_on_registration: int = Field(ge=0, alias="tokensOnRegistration")
    is_active: bool = Field(default=True, alias="isActive")


# Connect Request Models
class ConnectRequestCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    recipient_id: str = Field(alias="recipientId")
    customer_request_id: str = Field(alias="customerRequestId")
    trip_id: str = Field(alias="tripId")
    message: Optional[str] = Field(default=None, max_length=500)


class ConnectRequestRespond(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    action: RespondAction
    rejection_reason: Optional[str] = Field(default=None, max_length=200, alias="rejectionReason")


class ContactDetails(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    whatsapp_number: Optional[str] = Field(default=None, alias="whatsappNumber")


class DisclosureResponse(BaseModel):
    show: bool
    contact: Optional[ContactDetails] = None


class FreeTokenGrant(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    driver_id: str = Field(alias="driverId")
