from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Cookie, Depends, Query, Response, status
from sqlalchemy.orm import Session

from auth import get_current_user, require
from config import logger, settings
from crud import get_affiliate_by_slug, get_live_affiliate
from database import get_db
from errors import AffiliateNotActive, Forbidden, MissingAttribution, NotFound
from mail import Notifier, get_notifier
from models import Affiliate, AffiliateStatus, PaymentStatus, RateType, Referral, ReferralStatus, User
from roles import Capability
from schemas import AdminReferralCreate, ReferralCreate, ReferralOut, ReferralUpdate, TrackOut

router = APIRouter(
    prefix="/referral",
    tags=["Referral"],
    responses={404: {"description": "Not found"}}
)

def commission_amount(affiliate: Affiliate) -> Decimal:
    """
    Amount reported in the payment email. Percentage commissions need a deal
    value that referrals do not carry yet, so they report zero.
    """
    if affiliate.rate_type == RateType.fixed:
        return Decimal(affiliate.rate_value or 0)
    return Decimal("0")

def create_referral(db: Session, affiliate: Affiliate, data: ReferralCreate, notifier: Notifier) -> Referral:
    if affiliate.status != AffiliateStatus.active:
        logger.info(f"[referral.create] affiliate={affiliate.id} status={affiliate.status.value} refused")
        raise AffiliateNotActive()

    referral = Referral(
        affiliate_id=affiliate.id,
        status=ReferralStatus.pending,
        payment_status=PaymentStatus.unpaid,
        **data.model_dump(exclude={"affiliate_id"}),
    )
    db.add(referral)
    db.commit()
    db.refresh(referral)
    logger.info(f"[referral.create] referral={referral.id} affiliate={affiliate.id}")
    notifier.new_referral(referral)
    return referral

def get_visible_referral(db: Session, referral_id: int) -> Referral:
    referral = (
        db.query(Referral)
        .filter(Referral.id == referral_id, Referral.deleted_at.is_(None))
        .first()
    )
    if not referral:
        raise NotFound("Referral not found")
    return referral

@router.post("/manual", response_model=ReferralOut, status_code=status.HTTP_201_CREATED,
             summary="Create referral (authenticated affiliate)")
def create_manual_referral(data: ReferralCreate, current_user: User = Depends(require(Capability.WRITE_OWN)),
                           db: Session = Depends(get_db), notifier: Notifier = Depends(get_notifier)):
    affiliate = current_user.affiliate
    if affiliate is None or affiliate.deleted_at is not None:
        raise Forbidden("User is not an affiliate")
    return create_referral(db, affiliate, data, notifier)

@router.post("/admin", response_model=ReferralOut, status_code=status.HTTP_201_CREATED,
             summary="Create referral for an affiliate (admin)")
def create_admin_referral(data: AdminReferralCreate, _: User = Depends(require(Capability.WRITE_ALL)),
                          db: Session = Depends(get_db), notifier: Notifier = Depends(get_notifier)):
    affiliate = get_live_affiliate(db, data.affiliate_id)
    return create_referral(db, affiliate, data, notifier)

@router.post("/from-link", response_model=ReferralOut, status_code=status.HTTP_201_CREATED,
             summary="Create referral from affiliate link (public)")
def create_referral_from_link(
    data: ReferralCreate,
    afl: Optional[str] = Query(None, description="Affiliate slug from the referral link"),
    affiliate_slug: Optional[str] = Cookie(None, alias=settings.attribution_cookie_name),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    """The ``afl`` query parameter wins over the attribution cookie."""
    slug = afl or affiliate_slug
    if not slug:
        raise MissingAttribution()
    affiliate = get_affiliate_by_slug(db, slug)
    if not affiliate:
        raise NotFound("Affiliate not found")
    return create_referral(db, affiliate, data, notifier)

@router.get("/track", response_model=TrackOut, summary="Remember affiliate attribution")
def track_attribution(response: Response, afl: str = Query(...), db: Session = Depends(get_db)):
    affiliate = get_affiliate_by_slug(db, afl)
    if not affiliate or affiliate.status != AffiliateStatus.active:
        return {"tracked": False}
    response.set_cookie(
        key=settings.attribution_cookie_name,
        value=affiliate.slug,
        max_age=int(timedelta(days=settings.attribution_cookie_days).total_seconds()),
        httponly=False,  # read by the referral form
        secure=settings.cookie_secure,
        samesite="lax",
    )
    return {"tracked": True}

@router.get("", response_model=List[ReferralOut], summary="List referrals")
def list_referrals(
    status_filter: Optional[ReferralStatus] = Query(None, alias="status"),
    payment_status: Optional[PaymentStatus] = Query(None),
    affiliate_id: Optional[int] = Query(None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Administrators see every referral, affiliates only their own."""
    query = db.query(Referral).filter(Referral.deleted_at.is_(None))
    if current_user.role.permits(Capability.READ_ALL):
        if affiliate_id is not None:
            query = query.filter(Referral.affiliate_id == affiliate_id)
    elif current_user.role.permits(Capability.READ_OWN) and current_user.affiliate is not None:
        query = query.filter(Referral.affiliate_id == current_user.affiliate.id)
    else:
        raise Forbidden()
    if status_filter:
        query = query.filter(Referral.status == status_filter)
    if payment_status:
        query = query.filter(Referral.payment_status == payment_status)
    return query.order_by(Referral.entry_date.desc(), Referral.id.desc()).all()

@router.get("/{referral_id}", response_model=ReferralOut, summary="Get referral")
def get_referral(referral_id: int, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    referral = get_visible_referral(db, referral_id)
    if current_user.role.permits(Capability.READ_ALL):
        return referral
    owns = current_user.affiliate is not None and referral.affiliate_id == current_user.affiliate.id
    if owns and current_user.role.permits(Capability.READ_OWN):
        return referral
    raise NotFound("Referral not found")

@router.put("/{referral_id}", response_model=ReferralOut, summary="Update referral (admin only)")
def update_referral(
    referral_id: int,
    data: ReferralUpdate,
    current_user: User = Depends(require(Capability.WRITE_ALL)),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    """
    The payment date is stamped the first time the referral becomes paid and
    never changes afterwards. Each unpaid -> paid edge notifies the affiliate.
    """
    referral = get_visible_referral(db, referral_id)
    previous_payment = referral.payment_status
    changes = data.model_dump(exclude_unset=True)
    for field, value in changes.items():
        if value is None and field in ("status", "payment_status"):
            continue
        setattr(referral, field, value)

    if referral.payment_status == PaymentStatus.paid and referral.payment_date is None:
        referral.payment_date = datetime.utcnow()
    db.commit()
    db.refresh(referral)
    logger.info(f"[referral.update] referral={referral.id} by={current_user.id} fields={sorted(changes)}")

    if previous_payment == PaymentStatus.unpaid and referral.payment_status == PaymentStatus.paid:
        affiliate = referral.affiliate
        if affiliate is not None:
            notifier.payment_done(affiliate, commission_amount(affiliate))
    return referral

@router.delete("/{referral_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete referral (soft delete)")
def delete_referral(referral_id: int, current_user: User = Depends(require(Capability.WRITE_ALL)),
                    db: Session = Depends(get_db)):
    referral = get_visible_referral(db, referral_id)
    referral.deleted_at = datetime.utcnow()
    db.commit()
    logger.info(f"[referral.delete] referral={referral.id} by={current_user.id}")
    return
