"""
Pytest fixtures for the affiliate portal API.

Configuration is read from the environment at import time, so the test
settings are exported before any application module is imported.
"""
import os
import tempfile

_tmpdir = tempfile.mkdtemp(prefix="affiliate-portal-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_tmpdir, 'test.db')}"
os.environ["JWT_SECRET"] = "test-access-secret"
os.environ["JWT_REFRESH_SECRET"] = "test-refresh-secret"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["MAIL_SUPPRESS_SEND"] = "true"
os.environ["MAIL_FROM"] = "noreply@example.com"
os.environ["RECAPTCHA_ENABLED"] = "false"
os.environ["HOST_DOMAIN"] = "portal.example.com"

import pytest
from fastapi.testclient import TestClient
from fastapi_mail import FastMail

import mail
from crud import create_admin_account, create_affiliate_account
from database import Base, SessionLocal, engine
from main import app
from models import AffiliateStatus
from roles import Role
from utils import create_token_pair

PASSWORD = "Secret123"


def auth_headers(user):
    tokens = create_token_pair(user.id, user.email, user.role)
    return {"Authorization": f"Bearer {tokens['access_token']}"}


def message_body(message) -> str:
    """Decoded text of the first text part of a recorded email."""
    for part in message.walk():
        if part.get_content_maintype() == "text":
            return part.get_payload(decode=True).decode("utf-8")
    return ""


def subjects(outbox):
    return [message["Subject"] for message in outbox]


@pytest.fixture(scope="function")
def client():
    """Fresh schema per test; the startup hook recreates tables and seeds defaults."""
    Base.metadata.drop_all(bind=engine)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture(scope="function")
def db(client):
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def outbox():
    with FastMail(mail.conf).record_messages() as messages:
        yield messages


@pytest.fixture(scope="function")
def make_affiliate(db):
    def _make(
        email="jane@example.com",
        first_name="Jane",
        last_name="Doe",
        status=AffiliateStatus.active,
        verified=True,
        password=PASSWORD,
    ):
        return create_affiliate_account(
            db,
            email=email,
            password=password,
            first_name=first_name,
            last_name=last_name,
            phone="+15550000000",
            status=status,
            is_verified=verified,
        )
    return _make


@pytest.fixture(scope="function")
def make_admin(db):
    def _make(role=Role.SYSTEM_ADMIN, email=None):
        email = email or f"{role.value.lower()}@example.com"
        return create_admin_account(db, email, PASSWORD, role)
    return _make


@pytest.fixture(scope="function")
def admin_headers(make_admin):
    return auth_headers(make_admin(Role.SYSTEM_ADMIN))


@pytest.fixture(scope="function")
def sales_headers(make_admin):
    return auth_headers(make_admin(Role.SALES_ADMIN))


@pytest.fixture(scope="function")
def support_headers(make_admin):
    return auth_headers(make_admin(Role.SUPPORT_ADMIN))
