import json
from dataclasses import dataclass
from typing import Dict, List, Optional

from fastapi import Request
from sqlalchemy.orm import Session

from config import logger
from models import EmailTemplate, Setting

DEFAULT_AFFILIATE_URL = "https://example.com/referral_form"

DEFAULT_SETTINGS = [
    ("default_affiliate_url", DEFAULT_AFFILIATE_URL, "Default base URL for affiliate links"),
    ("manager_notification_emails", json.dumps(["managers@example.com"]), "Email addresses for internal notifications"),
]

DEFAULT_TEMPLATES = [
    (
        "Application Pending",
        "Verify your email address",
        "<h2>Welcome to the Affiliate Portal</h2>"
        "<p>Hello {name},</p>"
        "<p>Thank you for registering as an affiliate partner. Please verify your email address by clicking the link below:</p>"
        '<p><a href="{verification_url}">Verify Email</a></p>'
        "<p>This link will expire in 24 hours.</p>",
    ),
    (
        "Application Under Review",
        "Your affiliate application is under review",
        "<p>Hello {name},</p>"
        "<p>Your email address is confirmed. Our team is reviewing your application and will let you know once it has been approved.</p>",
    ),
    (
        "Application Accepted",
        "Your affiliate application has been approved",
        "<h2>Congratulations!</h2>"
        "<p>Hello {name},</p>"
        "<p>Your affiliate application has been approved. You can now log in to your dashboard and start referring clients.</p>"
        '<p><a href="{frontend_url}/login">Login to Dashboard</a></p>',
    ),
    (
        "Application Rejected",
        "Affiliate application status",
        "<h2>Application Status</h2>"
        "<p>Hello {name},</p>"
        "<p>We regret to inform you that your affiliate application could not be approved at this time.</p>",
    ),
    (
        "Payment Done",
        "Commission payment processed",
        "<h2>Payment Notification</h2>"
        "<p>Hello {name},</p>"
        "<p>Your commission payment of {amount} {currency} has been processed.</p>",
    ),
    (
        "New Affiliate Registration",
        "New affiliate registration",
        "<h2>New Affiliate Registration</h2>"
        "<ul><li>Name: {name}</li><li>Email: {user_email}</li>"
        "<li>Account Type: {account_type}</li><li>Company: {company_name}</li></ul>"
        "<p>Please review and approve/reject the application.</p>",
    ),
    (
        "New Referral",
        "New referral submission",
        "<h2>New Referral</h2>"
        "<p>{affiliate_name} submitted {referral_name}.</p>"
        '<p><a href="{referral_url}">View Referral</a></p>',
    ),
]


@dataclass(frozen=True)
class TemplateSnapshot:
    name: str
    subject: str
    body: str


class SiteConfig:
    """
    In-memory snapshot of the settings table and the email templates.

    Readers never touch the database; call ``reload`` after the underlying
    rows change (startup does it once, ``POST /admin/config/reload`` on demand).
    """

    def __init__(self):
        self._settings: Dict[str, str] = {}
        self._templates: Dict[str, TemplateSnapshot] = {}

    def reload(self, db: Session) -> None:
        self._settings = {row.key: row.value for row in db.query(Setting).all()}
        self._templates = {
            row.name: TemplateSnapshot(row.name, row.subject, row.body)
            for row in db.query(EmailTemplate).filter(EmailTemplate.enabled.is_(True)).all()
        }
        logger.info(f"[site_config.reload] settings={len(self._settings)} templates={len(self._templates)}")

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self._settings.get(key, default)

    def template(self, name: str) -> Optional[TemplateSnapshot]:
        return self._templates.get(name)

    @property
    def manager_emails(self) -> List[str]:
        raw = self.get("manager_notification_emails")
        if not raw:
            return []
        try:
            value = json.loads(raw)
        except ValueError:
            logger.warning("[site_config] manager_notification_emails is not valid JSON")
            return []
        if not isinstance(value, list):
            return []
        return [str(v) for v in value if v]

    @property
    def default_affiliate_url(self) -> str:
        return self.get("default_affiliate_url") or DEFAULT_AFFILIATE_URL


def seed_defaults(db: Session) -> None:
    """Insert missing default settings and templates; existing rows are left alone."""
    existing_keys = {key for (key,) in db.query(Setting.key).all()}
    for key, value, description in DEFAULT_SETTINGS:
        if key not in existing_keys:
            db.add(Setting(key=key, value=value, description=description))

    existing_templates = {name for (name,) in db.query(EmailTemplate.name).all()}
    for name, subject, body in DEFAULT_TEMPLATES:
        if name not in existing_templates:
            db.add(EmailTemplate(name=name, subject=subject, body=body, enabled=True))
    db.commit()


def get_site_config(request: Request) -> SiteConfig:
    return request.app.state.site_config
