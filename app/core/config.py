import os
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from .errors import ConfigError


def _env(name: str, default: Optional[str] = None):
    return Field(default_factory=lambda: os.getenv(name, default))


def _env_int(name: str, default: int):
    return Field(default_factory=lambda: int(os.getenv(name, str(default))))


def _env_float(name: str, default: float):
    return Field(default_factory=lambda: float(os.getenv(name, str(default))))


# Env var name for every credential the service cannot start without.
REQUIRED_ENV = {
    "shopify_access_token": "SHOPIFY_ACCESS_TOKEN",
    "shopify_shop_domain": "SHOPIFY_SHOP_DOMAIN",
    "shop_id": "SHOP_ID",
    "email_user": "EMAIL_USER",
    "email_pass": "EMAIL_PASS",
    "notification_email": "NOTIFICATION_EMAIL",
}

DEFAULT_ORIGINS = [
    "https://heartsforever.co.uk",
    "http://localhost:3000",
    "https://admin.shopify.com",
]


class Settings(BaseModel):
    """Environment-driven configuration, built once at startup.

    Credentials have no defaults; `ensure_complete` refuses to start the
    service while any of them is blank.
    """
    shopify_access_token: Optional[str] = _env("SHOPIFY_ACCESS_TOKEN")
    shopify_shop_domain: Optional[str] = _env("SHOPIFY_SHOP_DOMAIN")
    shopify_api_version: str = _env("SHOPIFY_API_VERSION", "2023-10")
    shop_id: Optional[str] = _env("SHOP_ID")

    email_user: Optional[str] = _env("EMAIL_USER")
    email_pass: Optional[str] = _env("EMAIL_PASS")
    notification_email: Optional[str] = _env("NOTIFICATION_EMAIL")
    smtp_host: str = _env("SMTP_HOST", "smtp.gmail.com")
    smtp_port: int = _env_int("SMTP_PORT", 465)
    smtp_starttls: bool = Field(
        default_factory=lambda: os.getenv("SMTP_STARTTLS", "false").lower() in {"1", "true", "yes"}
    )

    metafield_namespace: str = _env("METAFIELD_NAMESPACE", "custom_forms")
    metafield_key: str = _env("METAFIELD_KEY", "valuation_form")
    # "fail" turns an email failure into a failed submission, "warn" only logs it
    notify_failure_policy: str = _env("NOTIFY_FAILURE_POLICY", "fail")

    port: int = _env_int("PORT", 8080)
    max_body_bytes: int = _env_int("MAX_BODY_BYTES", 50 * 1024 * 1024)
    max_images: int = _env_int("MAX_IMAGES", 5)
    shopify_timeout: float = _env_float("SHOPIFY_TIMEOUT", 30.0)
    smtp_timeout: float = _env_float("SMTP_TIMEOUT", 30.0)
    submission_timeout: float = _env_float("SUBMISSION_TIMEOUT", 120.0)
    cors_extra_origins: List[str] = Field(
        default_factory=lambda: [
            o.strip() for o in os.getenv("CORS_EXTRA_ORIGINS", "").split(",") if o.strip()
        ]
    )
    log_level: str = _env("LOG_LEVEL", "INFO")

    @property
    def graphql_url(self) -> str:
        return f"https://{self.shopify_shop_domain}/admin/api/{self.shopify_api_version}/graphql.json"

    @property
    def shop_gid(self) -> str:
        return f"gid://shopify/Shop/{self.shop_id}"

    @property
    def allowed_origins(self) -> List[str]:
        origins = list(DEFAULT_ORIGINS)
        if self.shopify_shop_domain:
            origins.insert(2, f"https://{self.shopify_shop_domain}")
        for origin in self.cors_extra_origins:
            if origin not in origins:
                origins.append(origin)
        return origins

    def missing_required(self) -> List[str]:
        """Env var names of required settings that are unset or blank."""
        missing = []
        for field, env_name in REQUIRED_ENV.items():
            value = getattr(self, field)
            if value is None or not str(value).strip():
                missing.append(env_name)
        return missing

    def ensure_complete(self) -> "Settings":
        missing = self.missing_required()
        if missing:
            raise ConfigError(missing)
        if self.notify_failure_policy not in {"fail", "warn"}:
            raise ConfigError(
                [], f"NOTIFY_FAILURE_POLICY must be 'fail' or 'warn', got {self.notify_failure_policy!r}"
            )
        return self


def load_settings(env_file: Optional[str] = ".env") -> Settings:
    """Read `.env` (when present) into the environment and build Settings."""
    if env_file:
        load_dotenv(env_file, override=False)
    return Settings()
