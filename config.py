import logging
from typing import Optional

from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    host_domain: str = "localhost:3000"

    mail_username: str = ""
    mail_password: str = ""
    mail_from: str = "noreply@example.com"
    mail_from_name: str = "Affiliate Portal"
    mail_port: int = 587
    mail_server: str = "localhost"
    mail_tls: bool = False
    mail_suppress_send: bool = False
    mail_timeout: int = 30

    database_url: Optional[str] = None
    db_user: str = "postgres"
    db_password: str = ""
    db_host: str = "localhost"
    db_port: str = "5432"
    db_name: str = "affiliate_portal"

    jwt_secret: str
    jwt_refresh_secret: str
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60
    refresh_token_expire_days: int = 7
    email_verification_expire_hours: int = 24
    password_reset_expire_hours: int = 1
    bcrypt_rounds: int = 10
    slug_max_attempts: int = 10

    # Off only for local development; see recaptcha.verify_recaptcha
    recaptcha_enabled: bool = True
    recaptcha_secret_key: str = ""
    recaptcha_min_score: float = 0.5
    recaptcha_timeout: float = 10.0

    attribution_cookie_name: str = "affiliate_slug"
    attribution_cookie_days: int = 30
    cookie_secure: bool = False

    bootstrap_admin_email: Optional[str] = None
    bootstrap_admin_password: Optional[str] = None

    log_level: str = "INFO"

    class Config:
        env_file = ".env"

    @property
    def computed_database_url(self) -> str:
        if self.database_url:
            return self.database_url
        return f"postgresql://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    @property
    def frontend_url(self) -> str:
        if self.host_domain.startswith(("http://", "https://")):
            return self.host_domain.rstrip("/")
        return f"http://{self.host_domain}".rstrip("/")

settings = Settings()

logging.basicConfig(level=settings.log_level, format="%(asctime)s | %(levelname)s | %(message)s")
logger = logging.getLogger("affiliate_portal")
