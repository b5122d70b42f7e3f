import enum
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Enum, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship

from database import Base
from roles import Role


class AccountType(str, enum.Enum):
    individual = "individual"
    company = "company"


class AffiliateStatus(str, enum.Enum):
    pending = "pending"
    active = "active"
    rejected = "rejected"
    disabled = "disabled"


class RateType(str, enum.Enum):
    percentage = "percentage"
    fixed = "fixed"


class PaymentTerm(str, enum.Enum):
    monthly = "monthly"
    quarterly = "quarterly"
    yearly = "yearly"


class ReferralStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


class PaymentStatus(str, enum.Enum):
    unpaid = "unpaid"
    paid = "paid"
    rejected = "rejected"


def _enum(enum_cls):
    return Enum(enum_cls, native_enum=False, length=32)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    role = Column(_enum(Role), nullable=False, default=Role.AFFILIATE)
    is_verified = Column(Boolean, nullable=False, default=False)
    is_blocked = Column(Boolean, nullable=False, default=False)

    verification_token = Column(String, index=True, nullable=True)
    verification_expires = Column(DateTime, nullable=True)
    reset_token = Column(String, index=True, nullable=True)
    reset_expires = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    deleted_at = Column(DateTime, nullable=True)

    affiliate = relationship("Affiliate", back_populates="user", uselist=False)


class Affiliate(Base):
    __tablename__ = "affiliates"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    slug = Column(String, unique=True, index=True, nullable=False)
    status = Column(_enum(AffiliateStatus), nullable=False, default=AffiliateStatus.pending)

    account_type = Column(_enum(AccountType), nullable=False, default=AccountType.individual)
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False)
    company_name = Column(String, nullable=True)
    job_title = Column(String, nullable=True)
    phone = Column(String, nullable=True)

    rate_type = Column(_enum(RateType), nullable=False, default=RateType.percentage)
    rate_value = Column(Numeric(10, 2), nullable=False, default=0)
    payment_term = Column(_enum(PaymentTerm), nullable=False, default=PaymentTerm.monthly)
    currency = Column(String(3), nullable=False, default="USD")
    internal_notes = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    deleted_at = Column(DateTime, nullable=True)

    user = relationship("User", back_populates="affiliate")
    referrals = relationship("Referral", back_populates="affiliate")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class Referral(Base):
    __tablename__ = "referrals"

    id = Column(Integer, primary_key=True, index=True)
    # Nullable so referrals outlive a hard-deleted affiliate
    affiliate_id = Column(Integer, ForeignKey("affiliates.id", ondelete="SET NULL"), index=True, nullable=True)
    account_type = Column(_enum(AccountType), nullable=False)

    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    email = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    contract_duration = Column(String, nullable=True)
    work_country = Column(String, nullable=True)
    nationality = Column(String, nullable=True)
    marital_status = Column(String, nullable=True)

    company_name = Column(String, nullable=True)
    country = Column(String, nullable=True)
    contact_first_name = Column(String, nullable=True)
    contact_last_name = Column(String, nullable=True)
    contact_email = Column(String, nullable=True)
    contact_phone = Column(String, nullable=True)
    job_title = Column(String, nullable=True)
    linkedin = Column(String, nullable=True)

    notes = Column(Text, nullable=True)
    internal_notes = Column(Text, nullable=True)

    status = Column(_enum(ReferralStatus), nullable=False, default=ReferralStatus.pending)
    payment_status = Column(_enum(PaymentStatus), nullable=False, default=PaymentStatus.unpaid)
    entry_date = Column(DateTime, nullable=False, default=datetime.utcnow)
    payment_date = Column(DateTime, nullable=True)
    deleted_at = Column(DateTime, nullable=True)

    affiliate = relationship("Affiliate", back_populates="referrals")

    @property
    def display_name(self) -> str:
        if self.account_type == AccountType.company:
            return f"{self.contact_first_name or ''} {self.contact_last_name or ''}".strip()
        return f"{self.first_name or ''} {self.last_name or ''}".strip()


class Setting(Base):
    __tablename__ = "settings"

    key = Column(String, primary_key=True)
    value = Column(Text, nullable=False)
    description = Column(String, nullable=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)


class EmailTemplate(Base):
    __tablename__ = "email_templates"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, index=True, nullable=False)
    subject = Column(String, nullable=False)
    body = Column(Text, nullable=False)
    enabled = Column(Boolean, nullable=False, default=True)
