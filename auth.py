from typing import Optional

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from config import logger
from database import get_db
from errors import (
    AccountDisabled,
    ApplicationRejected,
    Blocked,
    EmailNotVerified,
    Forbidden,
    InvalidToken,
    NotFound,
    RegistrationPending,
)
from models import AffiliateStatus, User
from roles import Capability, Role
from utils import decode_access_token

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)

# Every affiliate status except active locks the account out of guarded routes
GUARD_AFFILIATE_ERRORS = {
    AffiliateStatus.rejected: ApplicationRejected,
    AffiliateStatus.pending: RegistrationPending,
    AffiliateStatus.disabled: AccountDisabled,
}

def get_current_user(token: Optional[str] = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> User:
    """
    Per-request guard. The account is reloaded on every call so that blocking,
    deletion, demotion or a status change applies immediately instead of at
    token expiry.
    """
    if not token:
        raise InvalidToken("Not authenticated")
    payload = decode_access_token(token)
    try:
        user_id = int(payload["sub"])
    except (KeyError, ValueError):
        raise InvalidToken()

    user = db.query(User).filter(User.id == user_id).first()
    if not user or user.deleted_at is not None:
        raise NotFound("User not found", status_code=401)
    if user.is_blocked:
        raise Blocked()
    if not user.is_verified:
        raise EmailNotVerified()
    if user.role == Role.AFFILIATE and user.affiliate is not None:
        error = GUARD_AFFILIATE_ERRORS.get(user.affiliate.status)
        if error is not None:
            raise error()
    return user

def require(capability: Capability):
    """Build a dependency that runs the guard and checks one capability."""
    def dependency(current_user: User = Depends(get_current_user)) -> User:
        if not current_user.role.permits(capability):
            logger.warning(f"[auth.require] user={current_user.id} role={current_user.role.value} lacks {capability.value}")
            raise Forbidden()
        return current_user
    return dependency
