"""
Tests for environment-driven configuration and startup validation.
"""
import pytest
from unittest.mock import patch

from pydantic import ValidationError

import app
from config import DEFAULT_PORT, AppSettings, Config, get_config

CONNECTION_NAME_VARS = ["connectionName", "OAUTH_CONNECTION_NAME", "connection_name"]


@pytest.fixture
def clean_env(monkeypatch):
    for name in CONNECTION_NAME_VARS + [
        "PORT", "LOG_LEVEL", "MicrosoftAppId", "MICROSOFT_APP_ID", "MicrosoftAppType", "MICROSOFT_APP_TYPE",
    ]:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


@pytest.mark.parametrize("env_name", ["connectionName", "OAUTH_CONNECTION_NAME"])
def test_connection_name_accepts_both_spellings(clean_env, env_name):
    clean_env.setenv(env_name, "TeamsSSO")

    settings = AppSettings()

    assert settings.connection_name == "TeamsSSO"


def test_defaults(clean_env):
    clean_env.setenv("connectionName", "TeamsSSO")

    config = Config()

    assert config.PORT == DEFAULT_PORT == 3978
    assert config.MICROSOFT_APP_TYPE == "MultiTenant"
    assert config.settings.bot_api_messages_endpoint == "/api/messages"
    assert config.LOG_LEVEL == "INFO"


def test_portal_and_upper_case_app_settings(clean_env):
    clean_env.setenv("connectionName", "TeamsSSO")
    clean_env.setenv("MicrosoftAppId", "app-id")
    clean_env.setenv("MICROSOFT_APP_PASSWORD", "super-secret-value")
    clean_env.setenv("PORT", "4000")

    config = Config()

    assert config.MICROSOFT_APP_ID == "app-id"
    assert config.MICROSOFT_APP_PASSWORD == "super-secret-value"
    assert config.PORT == 4000
    assert config.AUTH_ENABLED is True


def test_missing_connection_name_fails_validation(clean_env):
    with pytest.raises(ValidationError):
        AppSettings()


def test_blank_connection_name_fails_validation(clean_env):
    clean_env.setenv("connectionName", "   ")
    with pytest.raises(ValidationError):
        AppSettings()


def test_invalid_port_fails_validation(clean_env):
    clean_env.setenv("connectionName", "TeamsSSO")
    clean_env.setenv("PORT", "70000")
    with pytest.raises(ValidationError):
        AppSettings()


def test_endpoint_gets_leading_slash(clean_env):
    settings = AppSettings(connection_name="TeamsSSO", bot_api_messages_endpoint="api/messages")

    assert settings.bot_api_messages_endpoint == "/api/messages"


def test_health_check_warns_without_app_id(clean_env):
    config = Config(connection_name="TeamsSSO")

    result = config.health_check()

    assert result["status"] == "WARN"
    assert "MicrosoftAppId" in result["message"]


def test_get_config_is_a_singleton_until_reloaded(clean_env):
    clean_env.setenv("connectionName", "First")
    first = get_config(force_reload=True)
    clean_env.setenv("connectionName", "Second")

    assert get_config() is first
    assert get_config(force_reload=True).CONNECTION_NAME == "Second"


def test_startup_without_connection_name_exits_before_listening(clean_env):
    with patch.object(app, "load_environment"), patch.object(app, "setup_logging"), \
            patch.object(app.web, "run_app") as run_app:
        with pytest.raises(SystemExit) as excinfo:
            app.main()

    assert excinfo.value.code == 1
    run_app.assert_not_called()


def test_startup_listens_on_configured_port(clean_env):
    clean_env.setenv("connectionName", "TeamsSSO")
    clean_env.setenv("PORT", "4000")

    with patch.object(app, "load_environment"), patch.object(app, "setup_logging"), \
            patch.object(app.web, "run_app") as run_app:
        app.main()

    run_app.assert_called_once()
    assert run_app.call_args.kwargs["port"] == 4000
