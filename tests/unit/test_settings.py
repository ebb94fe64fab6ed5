"""Unit tests for settings."""

import pytest

from devrelay.config.settings import Settings
from devrelay.core.errors import ConfigurationError
from devrelay.proxy.forwarder import ForwardTarget


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for name in ("BACKEND_INTERNAL_URL", "DEVRELAY_BACKEND_INTERNAL_URL", "API_KEY", "DEVRELAY_API_KEY"):
        monkeypatch.delenv(name, raising=False)
    # Keep a developer's .env out of the picture
    monkeypatch.chdir(tmp_path)


def test_defaults():
    """Test the development defaults."""
    settings = Settings()

    assert settings.backend_internal_url == "http://backend-dev:8080"
    assert settings.route_prefix == "/api/backend"
    assert settings.request_timeout == 120.0
    assert settings.retry_attempts == 3
    assert settings.retry_base_delay == 0.4
    assert settings.api_key is None
    assert settings.get_target() == ForwardTarget(scheme="http", host="backend-dev", port=8080)


def test_backend_url_from_environment(monkeypatch):
    """Test BACKEND_INTERNAL_URL is read without a prefix."""
    monkeypatch.setenv("BACKEND_INTERNAL_URL", "http://10.0.0.5:9000")

    target = Settings().get_target()

    assert target.host == "10.0.0.5"
    assert target.port == 9000


def test_prefixed_environment(monkeypatch):
    """Test other fields use the DEVRELAY_ prefix."""
    monkeypatch.setenv("DEVRELAY_ROUTE_PREFIX", "/relay")
    monkeypatch.setenv("DEVRELAY_RETRY_ATTEMPTS", "5")
    monkeypatch.setenv("API_KEY", "dev-secret")

    settings = Settings()

    assert settings.route_prefix == "/relay"
    assert settings.retry_attempts == 5
    assert settings.api_key == "dev-secret"


def test_keyword_arguments_by_field_name():
    settings = Settings(backend_internal_url="https://origin.internal", api_key="k")

    assert settings.get_target().origin == "https://origin.internal"
    assert settings.api_key == "k"


def test_invalid_backend_url_is_configuration_error():
    """Test a malformed origin fails when the target is resolved."""
    settings = Settings(backend_internal_url="backend-dev:8080")

    with pytest.raises(ConfigurationError):
        settings.get_target()


def test_load_from_file(tmp_path):
    """Test loading settings from YAML."""
    config_file = tmp_path / "devrelay.yaml"
    config_file.write_text(
        "backend_internal_url: http://127.0.0.1:8081\n"
        "route_prefix: /api/backend\n"
        "retry_base_delay: 0.1\n"
    )

    settings = Settings.load_from_file(str(config_file))

    assert settings.get_target().port == 8081
    assert settings.retry_base_delay == 0.1


def test_load_from_empty_file(tmp_path):
    """Test an empty YAML file gives the defaults."""
    config_file = tmp_path / "empty.yaml"
    config_file.write_text("")

    assert Settings.load_from_file(str(config_file)).route_prefix == "/api/backend"
