from datetime import datetime

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from auth import require
from config import logger
from crud import soft_delete_referrals
from database import get_db
from errors import NotFound
from models import Affiliate, PaymentStatus, ReferralStatus, User
from roles import Capability
from routes.admin import affiliate_out
from schemas import AffiliateLink, Dashboard
from site_config import SiteConfig, get_site_config

router = APIRouter(
    prefix="/affiliates",
    tags=["Affiliates"],
    responses={404: {"description": "Not found"}}
)

def own_affiliate(current_user: User) -> Affiliate:
    affiliate = current_user.affiliate
    if affiliate is None or affiliate.deleted_at is not None:
        raise NotFound("Affiliate not found")
    return affiliate

@router.get("/me", response_model=Dashboard, summary="Affiliate dashboard")
def dashboard(current_user: User = Depends(require(Capability.READ_OWN))):
    affiliate = own_affiliate(current_user)
    referrals = [r for r in affiliate.referrals if r.deleted_at is None]
    stats = {
        "total": len(referrals),
        "pending": sum(1 for r in referrals if r.status == ReferralStatus.pending),
        "approved": sum(1 for r in referrals if r.status == ReferralStatus.approved),
        "paid": sum(1 for r in referrals if r.payment_status == PaymentStatus.paid),
    }
    return {"affiliate": affiliate_out(affiliate, stats["total"]), "stats": stats}

@router.get("/me/link", response_model=AffiliateLink, summary="Affiliate referral link")
def affiliate_link(current_user: User = Depends(require(Capability.READ_OWN)),
                   site: SiteConfig = Depends(get_site_config)):
    affiliate = own_affiliate(current_user)
    base_url = site.default_affiliate_url
    separator = "&" if "?" in base_url else "?"
    return {"link": f"{base_url}{separator}afl={affiliate.slug}", "slug": affiliate.slug}

@router.delete("/me", status_code=status.HTTP_204_NO_CONTENT, summary="Delete own account")
def delete_own_account(current_user: User = Depends(require(Capability.WRITE_OWN)), db: Session = Depends(get_db)):
    """
    Soft delete: profile, account and referrals get the same deletion
    timestamp and the account is blocked. The email stays taken.
    """
    affiliate = own_affiliate(current_user)
    now = datetime.utcnow()
    count = soft_delete_referrals(db, affiliate, now)
    affiliate.deleted_at = now
    current_user.deleted_at = now
    current_user.is_blocked = True
    db.commit()
    logger.info(f"[affiliates.delete_own_account] user={current_user.id} referrals_archived={count}")
    return
