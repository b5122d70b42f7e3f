from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from auth import require
from config import logger
from crud import create_admin_account, create_affiliate_account, get_live_affiliate, get_user, soft_delete_referrals
from database import get_db
from errors import NotFound
from mail import Notifier, get_notifier
from models import Affiliate, AffiliateStatus, Referral, User
from roles import Capability
from schemas import (
    AccountSummary,
    AdminPasswordReset,
    AdminUserCreate,
    AffiliateCreate,
    AffiliateOut,
    AffiliateStatusUpdate,
    AffiliateUpdate,
    BlockUpdate,
    CommissionUpdate,
    Message,
    RoleUpdate,
)
from site_config import SiteConfig, get_site_config
from utils import get_password_hash

router = APIRouter(
    prefix="/admin",
    tags=["Admin"],
    responses={404: {"description": "Not found"}}
)


def affiliate_out(affiliate: Affiliate, referral_count: Optional[int] = None) -> AffiliateOut:
    out = AffiliateOut.model_validate(affiliate)
    out.email = affiliate.user.email
    out.is_blocked = affiliate.user.is_blocked
    out.is_verified = affiliate.user.is_verified
    if referral_count is None:
        referral_count = sum(1 for r in affiliate.referrals if r.deleted_at is None)
    out.referral_count = referral_count
    return out


def apply_affiliate_status(affiliate: Affiliate, new_status: AffiliateStatus, notifier: Notifier) -> None:
    """
    Any status may move to any other. Emails fire on the edge, not the state:
    only pending -> active and pending -> rejected notify the affiliate.
    """
    previous = affiliate.status
    affiliate.status = new_status
    if previous == new_status:
        return
    logger.info(f"[admin.status] affiliate={affiliate.id} {previous.value} -> {new_status.value}")
    if previous == AffiliateStatus.pending and new_status == AffiliateStatus.active:
        notifier.application_accepted(affiliate)
    elif previous == AffiliateStatus.pending and new_status == AffiliateStatus.rejected:
        notifier.application_rejected(affiliate)


@router.get("/affiliates", response_model=List[AffiliateOut], summary="List affiliates")
def list_affiliates(
    status_filter: Optional[AffiliateStatus] = Query(None, alias="status"),
    search: Optional[str] = Query(None),
    _: User = Depends(require(Capability.READ_ALL)),
    db: Session = Depends(get_db),
):
    counts = (
        db.query(Referral.affiliate_id, func.count(Referral.id).label("referral_count"))
        .filter(Referral.deleted_at.is_(None))
        .group_by(Referral.affiliate_id)
        .subquery()
    )
    query = (
        db.query(Affiliate, func.coalesce(counts.c.referral_count, 0))
        .join(User, Affiliate.user_id == User.id)
        .outerjoin(counts, counts.c.affiliate_id == Affiliate.id)
        .filter(Affiliate.deleted_at.is_(None))
    )
    if status_filter:
        query = query.filter(Affiliate.status == status_filter)
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(
            Affiliate.first_name.ilike(pattern),
            Affiliate.last_name.ilike(pattern),
            Affiliate.company_name.ilike(pattern),
            User.email.ilike(pattern),
        ))
    rows = query.order_by(Affiliate.created_at.desc(), Affiliate.id.desc()).all()
    return [affiliate_out(affiliate, count) for affiliate, count in rows]


@router.get("/affiliates/{affiliate_id}", response_model=AffiliateOut, summary="Get affiliate")
def get_affiliate(affiliate_id: int, _: User = Depends(require(Capability.READ_ALL)), db: Session = Depends(get_db)):
    return affiliate_out(get_live_affiliate(db, affiliate_id))


@router.post("/affiliates", response_model=AffiliateOut, status_code=status.HTTP_201_CREATED,
             summary="Create an active affiliate")
def create_affiliate(body: AffiliateCreate, _: User = Depends(require(Capability.WRITE_ALL)), db: Session = Depends(get_db)):
    """Admin-created affiliates skip email verification and start active."""
    user = create_affiliate_account(
        db,
        email=body.email,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
        phone=body.phone,
        account_type=body.account_type,
        company_name=body.company_name,
        job_title=body.job_title,
        status=AffiliateStatus.active,
        is_verified=True,
    )
    logger.info(f"[admin.create_affiliate] user={user.id} slug={user.affiliate.slug}")
    return affiliate_out(user.affiliate, 0)


@router.put("/affiliates/{affiliate_id}/status", response_model=AffiliateOut, summary="Update affiliate status")
def update_affiliate_status(
    affiliate_id: int,
    body: AffiliateStatusUpdate,
    _: User = Depends(require(Capability.WRITE_ALL)),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    affiliate = get_live_affiliate(db, affiliate_id)
    apply_affiliate_status(affiliate, body.status, notifier)
    db.commit()
    db.refresh(affiliate)
    return affiliate_out(affiliate)


@router.put("/affiliates/{affiliate_id}", response_model=AffiliateOut, summary="Update affiliate details")
def update_affiliate(
    affiliate_id: int,
    body: AffiliateUpdate,
    _: User = Depends(require(Capability.WRITE_ALL)),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    affiliate = get_live_affiliate(db, affiliate_id)
    changes = body.model_dump(exclude_unset=True)
    new_status = changes.pop("status", None)
    for field, value in changes.items():
        if value is None and field != "internal_notes":
            continue
        setattr(affiliate, field, value)
    if new_status is not None:
        apply_affiliate_status(affiliate, new_status, notifier)
    db.commit()
    db.refresh(affiliate)
    return affiliate_out(affiliate)


@router.put("/affiliates/{affiliate_id}/commission", response_model=AffiliateOut, summary="Update affiliate commission")
def update_commission(
    affiliate_id: int,
    body: CommissionUpdate,
    _: User = Depends(require(Capability.WRITE_ALL)),
    db: Session = Depends(get_db),
):
    affiliate = get_live_affiliate(db, affiliate_id)
    affiliate.rate_type = body.rate_type
    affiliate.rate_value = body.rate_value
    affiliate.payment_term = body.payment_term
    db.commit()
    db.refresh(affiliate)
    return affiliate_out(affiliate)


@router.post("/affiliates/{affiliate_id}/block", response_model=AffiliateOut, summary="Block or unblock affiliate")
def block_affiliate(
    affiliate_id: int,
    body: BlockUpdate,
    current_user: User = Depends(require(Capability.WRITE_ALL)),
    db: Session = Depends(get_db),
):
    affiliate = get_live_affiliate(db, affiliate_id)
    affiliate.user.is_blocked = body.blocked
    db.commit()
    db.refresh(affiliate)
    logger.info(f"[admin.block] affiliate={affiliate.id} blocked={body.blocked} by={current_user.id}")
    return affiliate_out(affiliate)


@router.post("/affiliates/{affiliate_id}/reset-password", response_model=Message, summary="Set affiliate password")
def reset_affiliate_password(
    affiliate_id: int,
    body: AdminPasswordReset,
    current_user: User = Depends(require(Capability.WRITE_ALL)),
    db: Session = Depends(get_db),
):
    affiliate = get_live_affiliate(db, affiliate_id)
    affiliate.user.hashed_password = get_password_hash(body.new_password)
    affiliate.user.reset_token = None
    affiliate.user.reset_expires = None
    db.commit()
    logger.info(f"[admin.reset_password] affiliate={affiliate.id} by={current_user.id}")
    return {"message": "Password updated"}


@router.delete("/affiliates/{affiliate_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete affiliate")
def delete_affiliate(
    affiliate_id: int,
    current_user: User = Depends(require(Capability.WRITE_ALL)),
    db: Session = Depends(get_db),
):
    """
    Referrals are soft-deleted and kept for audit; the profile and the
    account are removed for good, which clears the referrals' affiliate link.
    """
    affiliate = get_live_affiliate(db, affiliate_id)
    user = affiliate.user
    count = soft_delete_referrals(db, affiliate, datetime.utcnow())
    db.query(Referral).filter(Referral.affiliate_id == affiliate.id).update(
        {Referral.affiliate_id: None}, synchronize_session=False
    )
    db.delete(affiliate)
    db.delete(user)
    db.commit()
    logger.info(f"[admin.delete_affiliate] affiliate={affiliate_id} referrals_archived={count} by={current_user.id}")
    return


@router.post("/users", response_model=AccountSummary, status_code=status.HTTP_201_CREATED,
             summary="Create administrator account")
def create_admin_user(body: AdminUserCreate, current_user: User = Depends(require(Capability.ADMIN_MANAGE)),
                      db: Session = Depends(get_db)):
    user = create_admin_account(db, body.email, body.password, body.role)
    logger.info(f"[admin.create_user] user={user.id} role={user.role.value} by={current_user.id}")
    return user


@router.put("/users/{user_id}/role", response_model=AccountSummary, summary="Change account role")
def update_user_role(user_id: int, body: RoleUpdate, current_user: User = Depends(require(Capability.ADMIN_MANAGE)),
                     db: Session = Depends(get_db)):
    user = get_user(db, user_id)
    if not user or user.deleted_at is not None:
        raise NotFound("User not found")
    user.role = body.role
    db.commit()
    db.refresh(user)
    logger.info(f"[admin.update_role] user={user.id} role={user.role.value} by={current_user.id}")
    return user


@router.post("/config/reload", response_model=Message, summary="Reload settings and email templates")
def reload_config(_: User = Depends(require(Capability.ADMIN_MANAGE)), db: Session = Depends(get_db),
                  site: SiteConfig = Depends(get_site_config)):
    site.reload(db)
    return {"message": "Configuration reloaded"}
