"""
Google reCAPTCHA verification for public registration.
"""
from typing import Optional

import httpx
from fastapi import Request

from config import logger, settings
from errors import RecaptchaFailed

VERIFY_URL = "https://www.google.com/recaptcha/api/siteverify"


async def verify_recaptcha(token: str, remote_ip: Optional[str] = None) -> bool:
    """
    Verify a reCAPTCHA token with Google's API.

    Returns True when verification is switched off (``RECAPTCHA_ENABLED=false``),
    False when it is switched on without a secret, otherwise Google's verdict
    (with the score threshold applied when v3 returns a score).
    """
    if not settings.recaptcha_enabled:
        logger.debug("[recaptcha] verification disabled by configuration")
        return True

    secret_key = settings.recaptcha_secret_key.strip()
    if not secret_key:
        logger.warning("[recaptcha] RECAPTCHA_SECRET_KEY not configured")
        return False

    if not token:
        logger.warning("[recaptcha] No token provided")
        return False

    try:
        async with httpx.AsyncClient() as client:
            response = await client.post(
                VERIFY_URL,
                data={
                    "secret": secret_key,
                    "response": token,
                    "remoteip": remote_ip or "",
                },
                timeout=settings.recaptcha_timeout,
            )

            if response.status_code != 200:
                logger.error(f"[recaptcha] Verification request failed: {response.status_code}")
                return False

            result = response.json()
    except (httpx.HTTPError, ValueError) as ex:
        logger.error(f"[recaptcha] Verification error: {ex}")
        return False

    if not isinstance(result, dict):
        logger.error("[recaptcha] Unexpected verification response")
        return False
    if not result.get("success", False):
        logger.warning(f"[recaptcha] Verification failed: {result.get('error-codes', [])}")
        return False

    score = result.get("score")
    if score is not None and score < settings.recaptcha_min_score:
        logger.warning(f"[recaptcha] Score too low: {score}")
        return False
    return True


async def recaptcha_guard(request: Request) -> None:
    """Route dependency: token from the X-Recaptcha-Token header or the body's recaptcha_token."""
    if not settings.recaptcha_enabled:
        return

    token = request.headers.get("x-recaptcha-token")
    if not token:
        try:
            body = await request.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            token = body.get("recaptcha_token")
    if not token:
        raise RecaptchaFailed("reCAPTCHA token is required")

    remote_ip = request.headers.get("x-forwarded-for") or (request.client.host if request.client else None)
    if not await verify_recaptcha(token, remote_ip):
        raise RecaptchaFailed()
