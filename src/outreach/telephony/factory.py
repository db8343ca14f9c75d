"""
Telephony provider factory.

Configuration comes from ``TelephonyConfig`` (environment + .env) only.
"""

from functools import lru_cache

from outreach.config import get_settings
from outreach.shared.logging import get_logger
from outreach.telephony.adapters.call_automation import CallAutomationProvider
from outreach.telephony.adapters.mock import MockTelephonyProvider
from outreach.telephony.config import ProviderType, TelephonyConfig
from outreach.telephony.config import get_telephony_config as _load_telephony_config
from outreach.telephony.interface import TelephonyProvider

logger = get_logger(__name__)


def _mask(s: str, keep: int = 4) -> str:
    if not s:
        return ""
    if len(s) <= keep:
        return "*" * len(s)
    return f"{s[:keep]}***"


@lru_cache(maxsize=1)
def get_telephony_config() -> TelephonyConfig:
    """Return the cached telephony configuration."""
    return _load_telephony_config()


@lru_cache(maxsize=1)
def get_telephony_provider() -> TelephonyProvider:
    """Create and cache the telephony provider selected by configuration."""
    cfg = get_telephony_config()

    logger.info(
        "Telephony config resolved",
        extra={
            "provider_type": cfg.provider_type.value,
            "endpoint": cfg.endpoint,
            "access_key": _mask(cfg.access_key),
            "callback_url": cfg.get_callback_url(),
        },
    )

    if cfg.provider_type == ProviderType.CALL_AUTOMATION:
        if not cfg.endpoint:
            raise ValueError("TELEPHONY_ENDPOINT is required for the call_automation provider")
        return CallAutomationProvider(cfg, voice_name=get_settings().voice_name)

    if cfg.provider_type == ProviderType.MOCK:
        return MockTelephonyProvider()

    raise ValueError(f"Unsupported telephony provider_type: {cfg.provider_type}")
