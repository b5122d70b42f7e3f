from decimal import Decimal
from typing import Dict, List, Union

from fastapi import BackgroundTasks, Depends
from fastapi_mail import ConnectionConfig, FastMail, MessageSchema

from config import logger, settings
from models import Affiliate, Referral
from site_config import SiteConfig, get_site_config

conf = ConnectionConfig(
    MAIL_USERNAME=settings.mail_username,
    MAIL_PASSWORD=settings.mail_password,
    MAIL_FROM=settings.mail_from,
    MAIL_FROM_NAME=settings.mail_from_name,
    MAIL_PORT=settings.mail_port,
    MAIL_SERVER=settings.mail_server,
    MAIL_SSL_TLS=settings.mail_tls,
    MAIL_STARTTLS=not settings.mail_tls,  # STARTTLS only when implicit TLS is off
    USE_CREDENTIALS=bool(settings.mail_username),
    SUPPRESS_SEND=int(settings.mail_suppress_send),
    TIMEOUT=settings.mail_timeout,
)

VERIFICATION_FALLBACK = (
    "<h2>Welcome to the Affiliate Portal</h2>"
    "<p>Please verify your email address by clicking the link below:</p>"
    '<a href="{verification_url}">Verify Email</a>'
    "<p>This link will expire in 24 hours.</p>"
)

PASSWORD_RESET_BODY = (
    "<h2>Password Reset Request</h2>"
    "<p>You requested to reset your password. Click the link below to reset it:</p>"
    '<a href="{reset_url}">Reset Password</a>'
    "<p>This link will expire in 1 hour.</p>"
    "<p>If you didn't request this, please ignore this email.</p>"
)


def replace_variables(text: str, variables: Dict[str, str]) -> str:
    """Substitute ``{key}`` placeholders, also accepting the key with its first underscore dropped."""
    result = text
    for key, value in variables.items():
        result = result.replace("{" + key + "}", value)
        result = result.replace("{" + key.replace("_", "", 1) + "}", value)
    return result


async def deliver(recipients: List[str], subject: str, body: str) -> None:
    """Send one message. Failures are logged and swallowed."""
    message = MessageSchema(
        subject=subject,
        recipients=recipients,
        body=body,
        subtype="html",
    )
    try:
        fm = FastMail(conf)
        await fm.send_message(message)
        logger.info(f"[mail.deliver] sent subject={subject!r} recipients={len(recipients)}")
    except Exception as ex:
        logger.exception(f"[mail.deliver] failed subject={subject!r}: {ex}")


def _name_parts(name: str) -> Dict[str, str]:
    parts = name.split(" ")
    return {"name": name, "first_name": parts[0] or name, "last_name": " ".join(parts[1:])}


class Notifier:
    """
    Renders notification emails from the site templates and queues them on
    the request's background tasks. Nothing here can fail the request.
    """

    def __init__(self, background_tasks: BackgroundTasks, site: SiteConfig):
        self.background_tasks = background_tasks
        self.site = site

    def _queue(self, to: Union[str, List[str]], subject: str, body: str) -> None:
        recipients = [to] if isinstance(to, str) else list(to)
        if not recipients:
            return
        self.background_tasks.add_task(deliver, recipients, subject, body)

    def _from_template(self, name: str, to: Union[str, List[str]], variables: Dict[str, str]) -> bool:
        template = self.site.template(name)
        if template is None:
            logger.info(f"[mail] template {name!r} missing or disabled, skipping")
            return False
        variables = {"frontend_url": settings.frontend_url, **variables}
        self._queue(to, replace_variables(template.subject, variables), replace_variables(template.body, variables))
        return True

    def verification(self, email: str, name: str, token: str) -> None:
        variables = {
            **_name_parts(name),
            "verification_url": f"{settings.frontend_url}/verify-email?token={token}",
        }
        if not self._from_template("Application Pending", email, variables):
            self._queue(email, "Verify your email address", replace_variables(VERIFICATION_FALLBACK, variables))

    def application_pending(self, email: str, name: str) -> None:
        self._from_template("Application Under Review", email, _name_parts(name))

    def password_reset(self, email: str, token: str) -> None:
        reset_url = f"{settings.frontend_url}/reset-password?token={token}"
        self._queue(email, "Password Reset Request", replace_variables(PASSWORD_RESET_BODY, {"reset_url": reset_url}))

    def application_accepted(self, affiliate: Affiliate) -> None:
        self._from_template("Application Accepted", affiliate.user.email, _name_parts(affiliate.full_name))

    def application_rejected(self, affiliate: Affiliate) -> None:
        self._from_template("Application Rejected", affiliate.user.email, _name_parts(affiliate.full_name))

    def payment_done(self, affiliate: Affiliate, amount: Decimal) -> None:
        variables = {
            **_name_parts(affiliate.full_name),
            "amount": str(amount),
            "currency": affiliate.currency,
        }
        self._from_template("Payment Done", affiliate.user.email, variables)

    def new_affiliate(self, affiliate: Affiliate) -> None:
        managers = self.site.manager_emails
        if not managers:
            return
        variables = {
            **_name_parts(affiliate.full_name),
            "user_email": affiliate.user.email,
            "affiliate_id": str(affiliate.id),
            "account_type": affiliate.account_type.value,
            "company_name": affiliate.company_name or "N/A",
            "phone": affiliate.phone or "N/A",
            "job_title": affiliate.job_title or "N/A",
            "registration_status": affiliate.status.value,
        }
        self._from_template("New Affiliate Registration", managers, variables)

    def new_referral(self, referral: Referral) -> None:
        managers = self.site.manager_emails
        if not managers:
            return
        affiliate = referral.affiliate
        variables = {
            "referral_url": f"{settings.frontend_url}/admin/referrals/{referral.id}",
            "referral_name": referral.display_name or referral.company_name or "N/A",
            "referral_email": referral.email or referral.contact_email or "N/A",
            "account_type": referral.account_type.value,
            "company_name": referral.company_name or "N/A",
            "affiliate_id": str(referral.affiliate_id),
            "affiliate_name": affiliate.full_name if affiliate else "N/A",
            "affiliate_email": affiliate.user.email if affiliate else "N/A",
        }
        self._from_template("New Referral", managers, variables)


def get_notifier(background_tasks: BackgroundTasks, site: SiteConfig = Depends(get_site_config)) -> Notifier:
    return Notifier(background_tasks, site)
