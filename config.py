# --- FILE: config.py ---
import os
import logging
import threading
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from pydantic import (
    AliasChoices,
    Field,
    ValidationError,
    field_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from utils.log_sanitizer import mask_secret

log = logging.getLogger(__name__)

# --- Constants ---
DEFAULT_PORT = 3978  # Default Bot Framework port
DEFAULT_APP_TYPE = "MultiTenant"
AVAILABLE_APP_TYPES = ["MultiTenant", "SingleTenant", "UserAssignedMSI"]


class AppSettings(BaseSettings):
    """
    Settings read from the environment once at startup.

    Each Bot Framework value accepts both the portal-style name
    (``MicrosoftAppId``) and the upper-case name (``MICROSOFT_APP_ID``).
    """

    # --- Bot identity ---
    MicrosoftAppId: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("MicrosoftAppId", "MICROSOFT_APP_ID")
    )
    MicrosoftAppPassword: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("MicrosoftAppPassword", "MICROSOFT_APP_PASSWORD")
    )
    MicrosoftAppTenantId: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("MicrosoftAppTenantId", "MICROSOFT_APP_TENANT_ID")
    )
    MicrosoftAppType: str = Field(
        default=DEFAULT_APP_TYPE, validation_alias=AliasChoices("MicrosoftAppType", "MICROSOFT_APP_TYPE")
    )

    # --- OAuth ---
    connection_name: str = Field(
        ..., validation_alias=AliasChoices("connectionName", "OAUTH_CONNECTION_NAME", "connection_name")
    )

    # --- Server ---
    port: int = Field(default=DEFAULT_PORT, validation_alias=AliasChoices("PORT", "port"), ge=1, le=65535)
    host: str = Field(default="0.0.0.0", validation_alias=AliasChoices("HOST", "host"))
    app_env: str = Field(
        default="development", validation_alias=AliasChoices("APP_ENV", "app_env")
    )
    log_level: str = Field(default="INFO", validation_alias=AliasChoices("LOG_LEVEL", "log_level"))
    bot_api_messages_endpoint: str = Field(
        default="/api/messages",
        validation_alias=AliasChoices("BOT_API_MESSAGES_ENDPOINT", "bot_api_messages_endpoint"),
    )
    bot_api_healthcheck_endpoint: str = Field(
        default="/healthz",
        validation_alias=AliasChoices("BOT_API_HEALTHCHECK_ENDPOINT", "bot_api_healthcheck_endpoint"),
    )
    oauth_callback_endpoint: str = Field(
        default="/oauthcallback",
        validation_alias=AliasChoices("OAUTH_CALLBACK_ENDPOINT", "oauth_callback_endpoint"),
    )
    public_dir: str = Field(default="public", validation_alias=AliasChoices("PUBLIC_DIR", "public_dir"))
    default_channel_id: str = Field(
        default="unknown", validation_alias=AliasChoices("DEFAULT_CHANNEL_ID", "default_channel_id")
    )

    @field_validator("connection_name")
    @classmethod
    def _connection_name_not_blank(cls, value: str) -> str:
        value = value.strip() if isinstance(value, str) else value
        if not value:
            raise ValueError("OAuth connection name (connectionName / OAUTH_CONNECTION_NAME) must not be empty")
        return value

    @field_validator("MicrosoftAppType")
    @classmethod
    def _check_app_type(cls, value: str) -> str:
        if value not in AVAILABLE_APP_TYPES:
            log.warning(f"Unrecognized MicrosoftAppType '{value}'. Known types: {', '.join(AVAILABLE_APP_TYPES)}")
        return value

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        value = (value or "INFO").upper()
        if value not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid LOG_LEVEL '{value}'")
        return value

    @field_validator("bot_api_messages_endpoint", "bot_api_healthcheck_endpoint", "oauth_callback_endpoint")
    @classmethod
    def _endpoint_starts_with_slash(cls, value: str) -> str:
        if not value.startswith("/"):
            value = "/" + value
        return value

    model_config = SettingsConfigDict(
        env_file=None,  # .env is loaded explicitly by app.load_environment()
        extra='ignore',
        case_sensitive=False,
        populate_by_name=True,
    )


class Config:
    """
    Application configuration: validated AppSettings plus convenience accessors.
    """

    def __init__(self, env_file: Optional[str] = None, **overrides: Any):
        # If an explicit env_file is provided for Config, load it with override.
        if env_file and os.path.exists(env_file):
            if load_dotenv(env_file, override=True):
                log.info(f"Config explicitly loaded .env file: {env_file}")

        try:
            self.settings = AppSettings(**overrides)
            log.info("AppSettings initialized within Config object.")
        except ValidationError as e:
            log.error(f"AppSettings validation failed within Config: {e}")
            raise

        self._log_config_summary()

    def _log_config_summary(self):
        """Log a summary of the loaded configuration."""
        log.info("=== Configuration Summary ===")
        log.info(f"Environment: {self.settings.app_env}")
        log.info(f"Port: {self.settings.port}")
        log.info(f"Log Level: {self.settings.log_level}")
        log.info(f"App Type: {self.settings.MicrosoftAppType}")
        log.info(f"App ID: {self.settings.MicrosoftAppId or 'NOT SET (authentication disabled)'}")
        log.info(f"App Password: {mask_secret(self.settings.MicrosoftAppPassword)}")
        log.info(f"Tenant ID: {self.settings.MicrosoftAppTenantId or 'NOT SET'}")
        log.info(f"OAuth Connection: {self.settings.connection_name}")
        log.info("=============================")

    @property
    def MICROSOFT_APP_ID(self) -> Optional[str]:
        return self.settings.MicrosoftAppId

    @property
    def MICROSOFT_APP_PASSWORD(self) -> Optional[str]:
        return self.settings.MicrosoftAppPassword

    @property
    def MICROSOFT_APP_TENANT_ID(self) -> Optional[str]:
        return self.settings.MicrosoftAppTenantId

    @property
    def MICROSOFT_APP_TYPE(self) -> str:
        return self.settings.MicrosoftAppType

    @property
    def CONNECTION_NAME(self) -> str:
        return self.settings.connection_name

    @property
    def PORT(self) -> int:
        return self.settings.port

    @property
    def LOG_LEVEL(self) -> str:
        return self.settings.log_level

    @property
    def PUBLIC_DIR(self) -> str:
        return self.settings.public_dir

    @property
    def AUTH_ENABLED(self) -> bool:
        return bool(self.settings.MicrosoftAppId)

    def health_check(self) -> Dict[str, Any]:
        """Perform a health check on the configuration."""
        issues = []
        if not self.settings.MicrosoftAppId:
            issues.append("MicrosoftAppId not configured (requests are not authenticated)")
        elif not self.settings.MicrosoftAppPassword and self.settings.MicrosoftAppType != "UserAssignedMSI":
            issues.append("MicrosoftAppPassword not configured")
        if self.settings.MicrosoftAppType == "SingleTenant" and not self.settings.MicrosoftAppTenantId:
            issues.append("SingleTenant app type requires MicrosoftAppTenantId")

        if issues:
            return {
                "status": "WARN",
                "message": f"Configuration issues: {'; '.join(issues)}",
                "component": "Config"
            }
        return {
            "status": "OK",
            "message": "Configuration healthy",
            "component": "Config"
        }


# Global configuration instance
_config_instance: Optional[Config] = None
_config_lock = threading.Lock()


def get_config(env_file: Optional[str] = None, force_reload: bool = False) -> Config:
    """
    Get the global configuration instance (singleton pattern).

    Args:
        env_file: Optional path to a .env file to load (only used on first initialization)
        force_reload: Force reloading the configuration (useful for testing)

    Returns:
        The global Config instance

    Raises:
        ValidationError: If required settings (the OAuth connection name) are missing or invalid.
    """
    global _config_instance

    with _config_lock:
        if _config_instance is None or force_reload:
            try:
                _config_instance = Config(env_file=env_file)
                log.info("Global configuration instance initialized")
            except Exception as e:
                log.error(f"Failed to initialize global configuration: {e}")
                raise

        return _config_instance


def reload_config(env_file: Optional[str] = None) -> Config:
    """
    Force reload the global configuration instance.
    Useful when environment variables have changed.
    """
    return get_config(env_file=env_file, force_reload=True)
