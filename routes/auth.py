from datetime import datetime

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from auth import get_current_user
from config import logger, settings
from crud import create_affiliate_account, get_user, get_user_by_email
from database import get_db
from errors import (
    AccountDisabled,
    ApplicationRejected,
    Blocked,
    EmailNotVerified,
    IncorrectCurrentPassword,
    InvalidCredentials,
    InvalidOrExpiredToken,
    InvalidToken,
)
from mail import Notifier, get_notifier
from models import AffiliateStatus, User
from recaptcha import recaptcha_guard
from roles import Role
from schemas import (
    AccountSummary,
    ChangePasswordIn,
    ForgotPasswordIn,
    LoginIn,
    LoginOut,
    Message,
    RefreshIn,
    RegisterIn,
    RegisterOut,
    ResetPasswordIn,
    TokenPair,
)
from utils import create_token_pair, decode_refresh_token, expires_in, generate_opaque_token, get_password_hash, verify_password

router = APIRouter(
    prefix="/auth",
    tags=["Authentication"],
    responses={404: {"description": "Not found"}}
)

RESET_REQUESTED = "If the email exists, a password reset link has been sent"

# Login only refuses these two; pending affiliates get tokens here but are
# stopped by the per-request guard on their next call.
LOGIN_AFFILIATE_ERRORS = {
    AffiliateStatus.rejected: ApplicationRejected,
    AffiliateStatus.disabled: AccountDisabled,
}

@router.post("/register", response_model=RegisterOut, status_code=status.HTTP_201_CREATED,
             summary="Register a new affiliate", dependencies=[Depends(recaptcha_guard)])
def register(user_in: RegisterIn, db: Session = Depends(get_db), notifier: Notifier = Depends(get_notifier)):
    """
    Create the Account and its pending Affiliate Profile together, then queue
    the verification email and the internal new-affiliate notification.
    """
    token = generate_opaque_token()
    user = create_affiliate_account(
        db,
        email=user_in.email,
        password=user_in.password,
        first_name=user_in.first_name,
        last_name=user_in.last_name,
        phone=user_in.phone,
        account_type=user_in.account_type,
        company_name=user_in.company_name,
        job_title=user_in.job_title,
        status=AffiliateStatus.pending,
        verification_token=token,
        verification_expires=expires_in(settings.email_verification_expire_hours),
    )
    logger.info(f"[auth.register] user={user.id} slug={user.affiliate.slug}")

    notifier.new_affiliate(user.affiliate)
    notifier.verification(user.email, user.affiliate.full_name, token)
    return user

@router.get("/verify-email", response_model=Message, summary="Verify email address")
def verify_email(token: str = Query(...), db: Session = Depends(get_db), notifier: Notifier = Depends(get_notifier)):
    """Single use: the token and its expiry are cleared on success."""
    user = (
        db.query(User)
        .filter(User.verification_token == token, User.verification_expires > datetime.utcnow())
        .first()
    )
    if not user:
        raise InvalidOrExpiredToken("Invalid or expired verification token")

    user.is_verified = True
    user.verification_token = None
    user.verification_expires = None
    db.commit()
    logger.info(f"[auth.verify_email] user={user.id}")

    name = user.affiliate.full_name if user.affiliate else user.email
    notifier.application_pending(user.email, name or user.email)
    return {"message": "Email verified successfully"}

@router.post("/login", response_model=LoginOut, summary="Login")
def login(credentials: LoginIn, db: Session = Depends(get_db)):
    """
    Sequential gate: credentials, block flag, email verification, then the
    affiliate status. Unknown email and wrong password fail identically.
    """
    user = get_user_by_email(db, credentials.email)
    if not user or not verify_password(credentials.password, user.hashed_password):
        logger.info("[auth.login] invalid credentials")
        raise InvalidCredentials()
    if user.is_blocked:
        raise Blocked()
    if not user.is_verified:
        raise EmailNotVerified()
    if user.role == Role.AFFILIATE and user.affiliate is not None:
        error = LOGIN_AFFILIATE_ERRORS.get(user.affiliate.status)
        if error is not None:
            raise error()

    tokens = create_token_pair(user.id, user.email, user.role)
    logger.info(f"[auth.login] user={user.id} role={user.role.value}")
    return {**tokens, "user": user}

@router.post("/refresh", response_model=TokenPair, summary="Refresh access token")
def refresh(body: RefreshIn, db: Session = Depends(get_db)):
    """
    Issue a new pair from the current account state. The presented refresh
    token is not revoked; it stays valid until it expires.
    """
    payload = decode_refresh_token(body.refresh_token)
    try:
        user = get_user(db, int(payload["sub"]))
    except ValueError:
        raise InvalidToken()
    if not user or user.deleted_at is not None:
        raise InvalidToken("Invalid refresh token")
    return create_token_pair(user.id, user.email, user.role)

@router.post("/forgot-password", response_model=Message, summary="Request password reset")
def forgot_password(body: ForgotPasswordIn, db: Session = Depends(get_db), notifier: Notifier = Depends(get_notifier)):
    """Same response whether or not the email is registered."""
    user = get_user_by_email(db, body.email)
    if user:
        token = generate_opaque_token()
        user.reset_token = token
        user.reset_expires = expires_in(settings.password_reset_expire_hours)
        db.commit()
        notifier.password_reset(user.email, token)
        logger.info(f"[auth.forgot_password] reset token issued for user={user.id}")
    return {"message": RESET_REQUESTED}

@router.post("/reset-password", response_model=Message, summary="Reset password with token")
def reset_password(body: ResetPasswordIn, db: Session = Depends(get_db)):
    user = (
        db.query(User)
        .filter(User.reset_token == body.token, User.reset_expires > datetime.utcnow())
        .first()
    )
    if not user:
        raise InvalidOrExpiredToken("Invalid or expired reset token")

    user.hashed_password = get_password_hash(body.password)
    user.reset_token = None
    user.reset_expires = None
    db.commit()
    logger.info(f"[auth.reset_password] user={user.id}")
    return {"message": "Password reset successfully"}

@router.post("/change-password", response_model=Message, summary="Change password")
def change_password(body: ChangePasswordIn, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    if not verify_password(body.old_password, current_user.hashed_password):
        raise IncorrectCurrentPassword()
    current_user.hashed_password = get_password_hash(body.new_password)
    db.commit()
    logger.info(f"[auth.change_password] user={current_user.id}")
    return {"message": "Password changed successfully"}

@router.get("/me", response_model=AccountSummary, summary="Current account")
def me(current_user: User = Depends(get_current_user)):
    return current_user
