import re
from datetime import datetime
from decimal import Decimal
from typing import Optional

from email_validator import EmailNotValidError, validate_email
from pydantic import BaseModel, Field, field_validator, model_validator

from models import AccountType, AffiliateStatus, PaymentStatus, PaymentTerm, RateType, ReferralStatus
from roles import ADMIN_ROLES, Role

PASSWORD_RULE = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)")


def check_password_strength(value: str) -> str:
    if len(value) < 8:
        raise ValueError("Password must be at least 8 characters long")
    if len(value.encode("utf-8")) > 72:
        raise ValueError("Password must be at most 72 bytes long")
    if not PASSWORD_RULE.match(value):
        raise ValueError("Password must contain at least one uppercase letter, one lowercase letter, and one number")
    return value


def check_email(value: Optional[str]) -> Optional[str]:
    """Validate the address but keep it exactly as typed; lookups compare it verbatim."""
    if value is None:
        return value
    try:
        validate_email(value, check_deliverability=False)
    except EmailNotValidError as ex:
        raise ValueError(str(ex))
    return value


class Message(BaseModel):
    message: str


# --- accounts ---------------------------------------------------------------

class RegisterIn(BaseModel):
    account_type: AccountType = AccountType.individual
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    company_name: Optional[str] = None
    job_title: Optional[str] = None
    email: str
    phone: str = Field(..., min_length=1)
    password: str
    recaptcha_token: Optional[str] = None

    @field_validator("email")
    @classmethod
    def email_format(cls, value: str) -> str:
        return check_email(value)

    @field_validator("password")
    @classmethod
    def password_strength(cls, value: str) -> str:
        return check_password_strength(value)


class LoginIn(BaseModel):
    email: str
    password: str


class RefreshIn(BaseModel):
    refresh_token: str


class ForgotPasswordIn(BaseModel):
    email: str


class ResetPasswordIn(BaseModel):
    token: str
    password: str

    @field_validator("password")
    @classmethod
    def password_strength(cls, value: str) -> str:
        return check_password_strength(value)


class ChangePasswordIn(BaseModel):
    old_password: str
    new_password: str

    @field_validator("new_password")
    @classmethod
    def password_strength(cls, value: str) -> str:
        return check_password_strength(value)


class TokenPair(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class AffiliateBrief(BaseModel):
    id: int
    slug: str
    status: AffiliateStatus

    class Config:
        from_attributes = True


class AccountSummary(BaseModel):
    id: int
    email: str
    role: Role
    affiliate: Optional[AffiliateBrief] = None

    class Config:
        from_attributes = True


class RegisterOut(AccountSummary):
    message: str = "Registration successful"


class LoginOut(TokenPair):
    user: AccountSummary


# --- affiliates ---------------------------------------------------------------

class AffiliateOut(BaseModel):
    id: int
    user_id: int
    email: Optional[str] = None
    slug: str
    status: AffiliateStatus
    account_type: AccountType
    first_name: str
    last_name: str
    company_name: Optional[str] = None
    job_title: Optional[str] = None
    phone: Optional[str] = None
    rate_type: RateType
    rate_value: Decimal
    payment_term: PaymentTerm
    currency: str
    internal_notes: Optional[str] = None
    is_blocked: bool = False
    is_verified: bool = False
    referral_count: int = 0
    created_at: datetime

    class Config:
        from_attributes = True


class AffiliateCreate(BaseModel):
    account_type: AccountType = AccountType.individual
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    company_name: Optional[str] = None
    job_title: Optional[str] = None
    email: str
    phone: str = Field(..., min_length=1)
    password: str

    @field_validator("email")
    @classmethod
    def email_format(cls, value: str) -> str:
        return check_email(value)

    @field_validator("password")
    @classmethod
    def password_strength(cls, value: str) -> str:
        return check_password_strength(value)


class AffiliateStatusUpdate(BaseModel):
    status: AffiliateStatus


class AffiliateUpdate(BaseModel):
    status: Optional[AffiliateStatus] = None
    rate_type: Optional[RateType] = None
    rate_value: Optional[Decimal] = Field(None, ge=0)
    payment_term: Optional[PaymentTerm] = None
    currency: Optional[str] = Field(None, pattern=r"^[A-Z]{3}$")
    internal_notes: Optional[str] = None

    class Config:
        extra = "forbid"


class CommissionUpdate(BaseModel):
    rate_type: RateType
    rate_value: Decimal = Field(..., ge=0)
    payment_term: PaymentTerm

    class Config:
        extra = "forbid"


class BlockUpdate(BaseModel):
    blocked: bool


class AdminPasswordReset(BaseModel):
    new_password: str

    @field_validator("new_password")
    @classmethod
    def password_strength(cls, value: str) -> str:
        return check_password_strength(value)


class AdminUserCreate(BaseModel):
    email: str
    password: str
    role: Role

    @field_validator("email")
    @classmethod
    def email_format(cls, value: str) -> str:
        return check_email(value)

    @field_validator("password")
    @classmethod
    def password_strength(cls, value: str) -> str:
        return check_password_strength(value)

    @field_validator("role")
    @classmethod
    def role_is_admin(cls, value: Role) -> Role:
        if value not in ADMIN_ROLES:
            raise ValueError("Administrator accounts need an administrator role")
        return value


class RoleUpdate(BaseModel):
    role: Role


class AffiliateLink(BaseModel):
    link: str
    slug: str


class ReferralStats(BaseModel):
    total: int
    pending: int
    approved: int
    paid: int


class Dashboard(BaseModel):
    affiliate: AffiliateOut
    stats: ReferralStats


# --- referrals ---------------------------------------------------------------

class ReferralCreate(BaseModel):
    account_type: AccountType

    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    contract_duration: Optional[str] = None
    work_country: Optional[str] = None
    nationality: Optional[str] = None
    marital_status: Optional[str] = None

    company_name: Optional[str] = None
    country: Optional[str] = None
    contact_first_name: Optional[str] = None
    contact_last_name: Optional[str] = None
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    job_title: Optional[str] = None
    linkedin: Optional[str] = None

    notes: Optional[str] = None

    @field_validator("email", "contact_email")
    @classmethod
    def email_format(cls, value: Optional[str]) -> Optional[str]:
        return check_email(value)

    class Config:
        extra = "forbid"

    @model_validator(mode="after")
    def check_variant(self):
        if self.account_type == AccountType.individual:
            if not (self.first_name and self.last_name):
                raise ValueError("Individual referrals need first_name and last_name")
        elif not self.company_name:
            raise ValueError("Company referrals need company_name")
        return self


class AdminReferralCreate(ReferralCreate):
    affiliate_id: int


class ReferralUpdate(BaseModel):
    status: Optional[ReferralStatus] = None
    payment_status: Optional[PaymentStatus] = None
    notes: Optional[str] = None
    internal_notes: Optional[str] = None

    class Config:
        extra = "forbid"


class ReferralOut(BaseModel):
    id: int
    affiliate_id: Optional[int] = None
    account_type: AccountType

    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    contract_duration: Optional[str] = None
    work_country: Optional[str] = None
    nationality: Optional[str] = None
    marital_status: Optional[str] = None

    company_name: Optional[str] = None
    country: Optional[str] = None
    contact_first_name: Optional[str] = None
    contact_last_name: Optional[str] = None
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    job_title: Optional[str] = None
    linkedin: Optional[str] = None

    notes: Optional[str] = None
    internal_notes: Optional[str] = None

    status: ReferralStatus
    payment_status: PaymentStatus
    entry_date: datetime
    payment_date: Optional[datetime] = None

    class Config:
        from_attributes = True


class TrackOut(BaseModel):
    tracked: bool
