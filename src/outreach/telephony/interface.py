"""
Telephony provider interface definition.

The provider places calls and runs media on them (prompts, DTMF
recognition, playback, hang-up). Every command is fire-and-acknowledge:
its outcome arrives later as an inbound event.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class CallPlacementRequest:
    """Request to place an outbound call."""

    to: str
    from_number: str
    callback_url: str
    call_session_id: int
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CallPlacementResponse:
    """Provider acknowledgement of a placed call."""

    call_connection_id: str
    created_at: datetime
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RecognitionRequest:
    """Play a prompt and collect DTMF tones."""

    prompt: str
    initial_silence_timeout_seconds: int
    inter_tone_timeout_seconds: int = 2
    max_tones: int = 1
    interrupt_prompt: bool = True
    operation_context: str | None = None


class TelephonyProviderError(Exception):
    """Base exception for telephony provider errors."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        provider_response: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.provider_response = provider_response or {}


class CallPlacementError(TelephonyProviderError):
    """Provider refused or failed to place a call."""


class MediaCommandError(TelephonyProviderError):
    """Provider refused a media command on a connected call."""


class TelephonyProvider(ABC):
    """Abstract interface for telephony providers."""

    @abstractmethod
    async def create_call(self, request: CallPlacementRequest) -> CallPlacementResponse:
        """Place an outbound call.

        Raises:
            CallPlacementError: If the provider does not accept the call.
        """
        ...

    @abstractmethod
    async def start_recognition(
        self,
        call_connection_id: str,
        request: RecognitionRequest,
    ) -> None:
        """Play ``request.prompt`` and listen for tones."""
        ...

    @abstractmethod
    async def play_message(self, call_connection_id: str, message: str) -> None:
        """Play a message with no input expected."""
        ...

    @abstractmethod
    async def hang_up(self, call_connection_id: str) -> None:
        """Terminate the call for all participants."""
        ...

    async def aclose(self) -> None:
        """Release provider resources."""
        return None
