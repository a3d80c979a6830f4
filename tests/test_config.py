"""Test configuration loading."""
from __future__ import annotations

import pytest
from pydantic import ValidationError

from core.config import DEV_JWT_SECRET, Settings, _resolve_database_url, get_settings


def _settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


def test_settings_load():
    """Test that settings load correctly."""
    settings = get_settings()

    assert settings.confirmation_token_ttl_days > 0
    assert settings.staleness_threshold_days > 0
    assert settings.log_level in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
    assert settings.default_delivery_method == "manual"


def test_settings_dry_run_default():
    """Test that dry_run defaults to True for safety."""
    assert get_settings().dry_run is True


def test_public_base_url_trailing_slash():
    settings = _settings(public_base_url="https://imoveis.example.com/")
    assert settings.public_base_url == "https://imoveis.example.com"


def test_log_level_normalized():
    assert _settings(log_level="debug").log_level == "DEBUG"
    with pytest.raises(ValidationError):
        _settings(log_level="chatty")


def test_unknown_delivery_method_rejected():
    assert _settings(default_delivery_method="WhatsApp").default_delivery_method == "whatsapp"
    with pytest.raises(ValidationError):
        _settings(default_delivery_method="carrier_pigeon")


def test_production_live_delivery_needs_twilio():
    with pytest.raises(ValidationError):
        _settings(
            environment="production",
            dry_run=False,
            default_delivery_method="whatsapp",
            jwt_secret_key="prod-secret",
            twilio_account_sid=None,
            twilio_auth_token=None,
        )

    # Manual hand-off never needs credentials
    settings = _settings(
        environment="production",
        dry_run=False,
        default_delivery_method="manual",
        jwt_secret_key="prod-secret",
    )
    assert settings.is_twilio_enabled() is False


def test_production_needs_real_jwt_secret():
    with pytest.raises(ValidationError):
        _settings(environment="production", jwt_secret_key=DEV_JWT_SECRET)


def test_scheduler_tenants_parsed():
    settings = _settings(scheduler_tenants=" acme, globex ,,")
    assert settings.get_scheduler_tenants() == ["acme", "globex"]


def test_enabled_services():
    settings = _settings(twilio_account_sid="AC123", twilio_auth_token="secret")
    assert settings.get_enabled_services() == ["twilio"]


@pytest.mark.parametrize(
    "url, absolute",
    [
        ("sqlite:///:memory:", False),
        ("postgresql://u:p@db/confirmations", False),
        ("sqlite:///./local.db", True),
        ("sqlite:///local.db", True),
    ],
)
def test_resolve_database_url(url, absolute):
    resolved = _resolve_database_url(url)
    if absolute:
        assert resolved.startswith("sqlite:///")
        assert resolved.endswith("/local.db")
        assert "./" not in resolved
    else:
        assert resolved == url
