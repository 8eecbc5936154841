import pytest
from fastapi.testclient import TestClient

from app.core.config import REQUIRED_ENV, Settings, load_settings
from app.core.errors import ConfigError
from app.main import create_app


@pytest.fixture
def clean_env(monkeypatch):
    for env_name in REQUIRED_ENV.values():
        monkeypatch.delenv(env_name, raising=False)
    for env_name in ("CORS_EXTRA_ORIGINS", "NOTIFY_FAILURE_POLICY", "MAX_BODY_BYTES", "PORT"):
        monkeypatch.delenv(env_name, raising=False)


def test_settings_read_environment_success(clean_env, monkeypatch):
    monkeypatch.setenv("SHOPIFY_ACCESS_TOKEN", "shpat_env")
    monkeypatch.setenv("SHOPIFY_SHOP_DOMAIN", "env-shop.myshopify.com")
    monkeypatch.setenv("SHOP_ID", "7")
    monkeypatch.setenv("EMAIL_USER", "a@example.com")
    monkeypatch.setenv("EMAIL_PASS", "pw")
    monkeypatch.setenv("NOTIFICATION_EMAIL", "b@example.com")
    monkeypatch.setenv("PORT", "9090")
    monkeypatch.setenv("CORS_EXTRA_ORIGINS", "https://staging.example, ,https://admin.shopify.com")

    s = load_settings(env_file=None).ensure_complete()
    assert s.port == 9090
    assert s.max_body_bytes == 50 * 1024 * 1024
    assert s.shop_gid == "gid://shopify/Shop/7"
    assert s.allowed_origins == [
        "https://heartsforever.co.uk",
        "http://localhost:3000",
        "https://env-shop.myshopify.com",
        "https://admin.shopify.com",
        "https://staging.example",
    ]


def test_missing_credentials_are_named_failure(clean_env, monkeypatch):
    monkeypatch.setenv("SHOPIFY_ACCESS_TOKEN", "shpat_env")
    monkeypatch.setenv("EMAIL_PASS", "   ")
    with pytest.raises(ConfigError) as exc_info:
        Settings().ensure_complete()
    assert exc_info.value.missing == [
        "SHOPIFY_SHOP_DOMAIN",
        "SHOP_ID",
        "EMAIL_USER",
        "EMAIL_PASS",
        "NOTIFICATION_EMAIL",
    ]
    assert "SHOP_ID" in str(exc_info.value)


def test_invalid_notify_policy_failure(settings):
    settings.notify_failure_policy = "ignore"
    with pytest.raises(ConfigError, match="NOTIFY_FAILURE_POLICY"):
        settings.ensure_complete()


def test_startup_aborts_without_configuration(clean_env):
    app = create_app(Settings())
    with pytest.raises(ConfigError):
        with TestClient(app):
            pass
