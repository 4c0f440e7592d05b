from pydantic import BaseModel, EmailStr, Field, ConfigDict, field_validator
from typing import Optional, Dict, Any, List
from enum import Enum
import re

# ============================================================================
# ENUMS (System Constants)
# ============================================================================

class TenantType(str, Enum):
    RESTAURANT = "restaurant"
    VOICE = "voice"
    REAL_ESTATE = "real_estate"
    MERXUS = "merxus"

class UserRole(str, Enum):
    OWNER = "owner"
    MANAGER = "manager"
    STAFF = "staff"
    USER = "user"
    ADMIN = "admin"
    VIEWER = "viewer"
    MERXUS_ADMIN = "merxus_admin"
    SUPER_ADMIN = "super_admin"

class SubscriptionStatus(str, Enum):
    TRIAL = "trial"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"

class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"

# Claim keys carrying a tenant id, in lookup order.
TENANT_CLAIM_KEYS = ("tenantId", "restaurantId", "officeId", "agentId")

PHONE_PATTERN = re.compile(r"^\+?\d{10,15}$")
MIN_PASSWORD_LENGTH = 6


def normalize_phone(phone: Optional[str]) -> str:
    """Strip everything except digits and a leading plus."""
    return re.sub(r"[^\d+]", "", phone or "")


def validate_phone_number(phone: Optional[str]) -> bool:
    """Empty is allowed; otherwise 10-15 digits with an optional leading +."""
    if not phone:
        return True
    return bool(PHONE_PATTERN.match(normalize_phone(phone)))


# ============================================================================
# MENU
# ============================================================================

class MenuItemCreate(BaseModel):
    """Menu item as accepted by POST/PUT /menu and the CSV importer."""
    model_config = ConfigDict(extra="ignore")

    name: str = Field(min_length=1)
    description: str = ""
    price: float = Field(ge=0)
    category: str = Field(min_length=1)
    isAvailable: bool = True
    tags: List[str] = Field(default_factory=list)

    @field_validator("name", "category")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v.strip()


class AvailabilityUpdate(BaseModel):
    isAvailable: bool


class MenuImportRequest(BaseModel):
    csv: str


# ============================================================================
# ORDERS / CUSTOMERS
# ============================================================================

class OrderUpdate(BaseModel):
    """Partial order update. Unknown keys pass through to Firestore."""
    model_config = ConfigDict(extra="allow")

    status: Optional[str] = None
    notes: Optional[str] = None


class CustomerUpdate(BaseModel):
    tags: List[str] = Field(default_factory=list)
    notes: str = ""


# ============================================================================
# SETTINGS
# ============================================================================

class BusinessHoursDay(BaseModel):
    open: str = "11:00"
    close: str = "21:00"
    closed: bool = False


class SettingsUpdate(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: Optional[str] = None
    phoneNumber: Optional[str] = None
    timezone: Optional[str] = None
    businessHours: Optional[Dict[str, BusinessHoursDay]] = None
    notifySmsNumbers: Optional[List[str]] = None
    notifyEmailAddresses: Optional[List[EmailStr]] = None

    @field_validator("phoneNumber")
    @classmethod
    def check_phone(cls, v: Optional[str]) -> Optional[str]:
        if not validate_phone_number(v):
            raise ValueError("Phone number must contain 10-15 digits")
        return v

    @field_validator("notifySmsNumbers")
    @classmethod
    def check_sms_numbers(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        for number in v or []:
            if not validate_phone_number(number):
                raise ValueError(f"Invalid SMS number: {number}")
        return v


# ============================================================================
# BILLING
# ============================================================================

class CheckoutRequest(BaseModel):
    """Request to create checkout session."""
    plan: str  # basic, professional, enterprise


# ============================================================================
# SUPER ADMIN
# ============================================================================

class SuperAdminUserUpdate(BaseModel):
    displayName: Optional[str] = None
    disabled: Optional[bool] = None
    role: Optional[UserRole] = None
    password: Optional[str] = None
    email: Optional[EmailStr] = None

    @field_validator("password")
    @classmethod
    def check_password(cls, v: Optional[str]) -> Optional[str]:
        if v and len(v) < MIN_PASSWORD_LENGTH:
            raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        return v


class ClaimsFixResult(BaseModel):
    """Outcome of a custom-claims repair."""
    uid: str
    needs_update: bool
    old_claims: Dict[str, Any] = Field(default_factory=dict)
    new_claims: Dict[str, Any] = Field(default_factory=dict)


# ============================================================================
# RESERVATIONS
# ============================================================================

class ReservationCreate(BaseModel):
    """Reservation as entered by staff. Unknown keys are ignored."""
    customerName: Optional[str] = None
    customerPhone: Optional[str] = None
    partySize: Optional[int] = Field(default=None, ge=1)
    date: Optional[str] = None
    time: Optional[str] = None
    specialRequests: Optional[str] = None
    status: Optional[str] = None
    source: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("customerPhone")
    @classmethod
    def check_phone(cls, v: Optional[str]) -> Optional[str]:
        if not validate_phone_number(v):
            raise ValueError("Phone number must contain 10-15 digits")
        return v


class ReservationUpdate(ReservationCreate):
    """Partial update. Unknown keys pass through to Firestore."""
    model_config = ConfigDict(extra="allow")


# ============================================================================
# VOICE OFFICES
# ============================================================================

# Office roles allowed to manage users and routing rules.
OFFICE_ADMIN_ROLES = (UserRole.OWNER.value, UserRole.ADMIN.value)
OFFICE_USER_ROLES = (UserRole.ADMIN, UserRole.USER, UserRole.VIEWER)


class AIConfig(BaseModel):
    model_config = ConfigDict(extra="allow")

    model: str = "gpt-4o-mini"
    voiceName: str = "alloy"
    language: str = "en-US"
    systemPrompt: str = ""


class VoiceSettingsUpdate(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: Optional[str] = None
    phoneNumber: Optional[str] = None
    address: Optional[str] = None
    websiteUrl: Optional[str] = None
    timezone: Optional[str] = None
    businessHours: Optional[Dict[str, BusinessHoursDay]] = None
    aiConfig: Optional[AIConfig] = None

    @field_validator("phoneNumber")
    @classmethod
    def check_phone(cls, v: Optional[str]) -> Optional[str]:
        if not validate_phone_number(v):
            raise ValueError("Phone number must contain 10-15 digits")
        return v


class OfficeUserInvite(BaseModel):
    email: EmailStr
    displayName: Optional[str] = None
    role: UserRole

    @field_validator("role")
    @classmethod
    def check_role(cls, v: UserRole) -> UserRole:
        if v not in OFFICE_USER_ROLES:
            raise ValueError("Invalid role")
        return v


class OfficeUserUpdate(BaseModel):
    role: Optional[UserRole] = None
    disabled: Optional[bool] = None

    @field_validator("role")
    @classmethod
    def check_role(cls, v: Optional[UserRole]) -> Optional[UserRole]:
        if v is not None and v not in OFFICE_USER_ROLES:
            raise ValueError("Invalid role")
        return v


class RoutingRuleCreate(BaseModel):
    name: Optional[str] = None
    description: str = ""
    enabled: bool = True
    priority: int = 0
    conditions: Dict[str, Any] = Field(default_factory=dict)
    action: Optional[Dict[str, Any]] = None


class RoutingRuleUpdate(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: Optional[str] = None
    description: Optional[str] = None
    enabled: Optional[bool] = None
    priority: Optional[int] = None
    conditions: Optional[Dict[str, Any]] = None
    action: Optional[Dict[str, Any]] = None


# ============================================================================
# REAL ESTATE AGENTS
# ============================================================================

class EstateSettingsUpdate(BaseModel):
    """Agent profile, routing and AI settings. Stored as sent (merge)."""
    model_config = ConfigDict(extra="allow")

    name: Optional[str] = None
    brandName: Optional[str] = None
    email: Optional[EmailStr] = None
    phonePrimary: Optional[str] = None
    timezone: Optional[str] = None
    markets: Optional[List[str]] = None
    languagesSupported: Optional[List[str]] = None
    autoSendFlyers: Optional[bool] = None

    @field_validator("phonePrimary")
    @classmethod
    def check_phone(cls, v: Optional[str]) -> Optional[str]:
        if not validate_phone_number(v):
            raise ValueError("Phone number must contain 10-15 digits")
        return v


class ListingPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    address: Optional[str] = None
    price: Optional[float] = Field(default=None, ge=0)
    status: Optional[str] = None
    bedrooms: Optional[float] = Field(default=None, ge=0)
    bathrooms: Optional[float] = Field(default=None, ge=0)


class LeadUpdate(BaseModel):
    model_config = ConfigDict(extra="allow")

    status: Optional[str] = None
    notes: Optional[str] = None


class ShowingPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    listingId: Optional[str] = None
    scheduled_date: Optional[str] = None
    status: Optional[str] = None
