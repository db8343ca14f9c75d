"""
Telephony provider configuration.
"""

from enum import Enum

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ProviderType(str, Enum):
    """Supported telephony provider types."""

    CALL_AUTOMATION = "call_automation"
    MOCK = "mock"


class TelephonyConfig(BaseSettings):
    """Telephony provider configuration from environment."""

    model_config = SettingsConfigDict(
        env_prefix="TELEPHONY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Provider selection
    provider_type: ProviderType = Field(default=ProviderType.MOCK)

    # Provider endpoint and credentials
    endpoint: str = Field(
        default="",
        description="Base URL of the call automation REST API.",
    )
    access_key: str = Field(default="")
    api_version: str = Field(default="2023-10-15")
    request_timeout_seconds: float = Field(default=10.0, gt=0, le=120)

    # Caller ID (E.164)
    from_number: str = Field(default="+10000000000")

    # Public base URL the provider posts call events to
    callback_base_url: str = Field(default="http://localhost:8000")
    events_path: str = Field(default="/api/calls/events")

    def get_callback_url(self) -> str:
        base = self.callback_base_url.rstrip("/")
        path = self.events_path if self.events_path.startswith("/") else f"/{self.events_path}"
        return f"{base}{path}"


def get_telephony_config() -> TelephonyConfig:
    return TelephonyConfig()
