"""
Database helpers shared by the routers.

Account creation owns the race handling for the two unique columns involved
in registration: ``users.email`` and ``affiliates.slug``. Slugs are picked
optimistically and the unique constraint settles concurrent claims; a losing
request retries with the next numeric suffix.
"""
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import logger, settings
from errors import DuplicateEmail, NotFound, SlugUnavailable
from models import AccountType, Affiliate, AffiliateStatus, Referral, User
from roles import Role
from utils import get_password_hash, slug_base, slug_candidate


def get_user(db: Session, user_id: int) -> Optional[User]:
    return db.query(User).filter(User.id == user_id).first()


def get_user_by_email(db: Session, email: str) -> Optional[User]:
    # Soft-deleted accounts still own their email
    return db.query(User).filter(User.email == email).first()


def email_taken(db: Session, email: str) -> bool:
    return db.query(User.id).filter(User.email == email).first() is not None


def get_live_affiliate(db: Session, affiliate_id: int) -> Affiliate:
    affiliate = (
        db.query(Affiliate)
        .filter(Affiliate.id == affiliate_id, Affiliate.deleted_at.is_(None))
        .first()
    )
    if not affiliate:
        raise NotFound("Affiliate not found")
    return affiliate


def get_affiliate_by_slug(db: Session, slug: str) -> Optional[Affiliate]:
    return (
        db.query(Affiliate)
        .filter(Affiliate.slug == slug, Affiliate.deleted_at.is_(None))
        .first()
    )


def next_free_slug(db: Session, base: str, start: int = 0):
    counter = start
    while True:
        slug = slug_candidate(base, counter)
        if db.query(Affiliate.id).filter(Affiliate.slug == slug).first() is None:
            return slug, counter
        counter += 1


def create_affiliate_account(
    db: Session,
    *,
    email: str,
    password: str,
    first_name: str,
    last_name: str,
    phone: Optional[str],
    account_type: AccountType = AccountType.individual,
    company_name: Optional[str] = None,
    job_title: Optional[str] = None,
    status: AffiliateStatus = AffiliateStatus.pending,
    is_verified: bool = False,
    verification_token: Optional[str] = None,
    verification_expires: Optional[datetime] = None,
) -> User:
    """
    Create an affiliate Account and its Affiliate Profile in one commit.

    Raises DuplicateEmail when the email is already registered (soft-deleted
    accounts included) and SlugUnavailable when every slug attempt lost a
    race.
    """
    if email_taken(db, email):
        raise DuplicateEmail()

    hashed_password = get_password_hash(password)
    base = slug_base(first_name, last_name)
    counter = 0
    for attempt in range(settings.slug_max_attempts):
        slug, counter = next_free_slug(db, base, counter)
        user = User(
            email=email,
            hashed_password=hashed_password,
            role=Role.AFFILIATE,
            is_verified=is_verified,
            verification_token=verification_token,
            verification_expires=verification_expires,
        )
        user.affiliate = Affiliate(
            slug=slug,
            status=status,
            account_type=account_type,
            first_name=first_name,
            last_name=last_name,
            company_name=company_name,
            job_title=job_title,
            phone=phone,
        )
        db.add(user)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            if email_taken(db, email):
                raise DuplicateEmail()
            logger.warning(f"[crud.create_affiliate_account] slug {slug!r} claimed concurrently, attempt={attempt + 1}")
            counter += 1
            continue
        db.refresh(user)
        return user

    logger.error(f"[crud.create_affiliate_account] gave up on slug base {base!r}")
    raise SlugUnavailable()


def create_admin_account(db: Session, email: str, password: str, role: Role) -> User:
    if email_taken(db, email):
        raise DuplicateEmail()
    user = User(
        email=email,
        hashed_password=get_password_hash(password),
        role=role,
        is_verified=True,
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise DuplicateEmail()
    db.refresh(user)
    return user


def soft_delete_referrals(db: Session, affiliate: Affiliate, when: datetime) -> int:
    return (
        db.query(Referral)
        .filter(Referral.affiliate_id == affiliate.id, Referral.deleted_at.is_(None))
        .update({Referral.deleted_at: when}, synchronize_session=False)
    )


def ensure_bootstrap_admin(db: Session) -> None:
    email = settings.bootstrap_admin_email
    password = settings.bootstrap_admin_password
    if not email or not password:
        return
    if email_taken(db, email):
        return
    create_admin_account(db, email, password, Role.SYSTEM_ADMIN)
    logger.info(f"[crud.ensure_bootstrap_admin] created system administrator {email}")
