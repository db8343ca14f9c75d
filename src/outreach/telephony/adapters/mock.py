"""
Mock telephony provider for local development and tests.

Records every command instead of reaching a real provider.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from outreach.shared.logging import get_logger
from outreach.telephony.interface import (
    CallPlacementError,
    CallPlacementRequest,
    CallPlacementResponse,
    MediaCommandError,
    RecognitionRequest,
    TelephonyProvider,
    TelephonyProviderError,
)

logger = get_logger(__name__)


@dataclass(frozen=True)
class ProviderCommand:
    """One recorded media command."""

    action: str
    call_connection_id: str
    payload: Any = None


@dataclass
class _Failure:
    message: str
    error_code: str


class MockTelephonyProvider(TelephonyProvider):
    """In-memory telephony provider."""

    def __init__(self) -> None:
        self._calls: list[CallPlacementRequest] = []
        self._commands: list[ProviderCommand] = []
        self._failures: dict[str, _Failure] = {}
        self._next_call_id: int = 1

    def reset(self) -> None:
        self._calls.clear()
        self._commands.clear()
        self._failures.clear()
        self._next_call_id = 1

    def configure_failure(
        self,
        action: str = "create_call",
        should_fail: bool = True,
        error_message: str = "Mock failure",
        error_code: str = "MOCK_ERROR",
    ) -> None:
        """Make ``action`` raise until reconfigured.

        ``action`` is one of ``create_call``, ``start_recognition``,
        ``play_message`` or ``hang_up``.
        """
        if should_fail:
            self._failures[action] = _Failure(error_message, error_code)
        else:
            self._failures.pop(action, None)

    @property
    def calls(self) -> list[CallPlacementRequest]:
        return self._calls.copy()

    @property
    def commands(self) -> list[ProviderCommand]:
        return self._commands.copy()

    def commands_for(self, call_connection_id: str) -> list[ProviderCommand]:
        return [c for c in self._commands if c.call_connection_id == call_connection_id]

    def get_last_command(self) -> ProviderCommand | None:
        return self._commands[-1] if self._commands else None

    def _check_failure(self, action: str, error_cls: type[TelephonyProviderError]) -> None:
        failure = self._failures.get(action)
        if failure is not None:
            raise error_cls(failure.message, error_code=failure.error_code)

    async def create_call(self, request: CallPlacementRequest) -> CallPlacementResponse:
        logger.info(
            "Mock: placing call",
            extra={"call_session_id": request.call_session_id},
        )
        self._check_failure("create_call", CallPlacementError)

        self._calls.append(request)
        call_connection_id = f"MOCK_CONN_{self._next_call_id:06d}"
        self._next_call_id += 1

        return CallPlacementResponse(
            call_connection_id=call_connection_id,
            created_at=datetime.now(timezone.utc),
            raw_response={"mock": True, "callConnectionId": call_connection_id},
        )

    async def start_recognition(
        self,
        call_connection_id: str,
        request: RecognitionRequest,
    ) -> None:
        self._check_failure("start_recognition", MediaCommandError)
        self._commands.append(ProviderCommand("start_recognition", call_connection_id, request))

    async def play_message(self, call_connection_id: str, message: str) -> None:
        self._check_failure("play_message", MediaCommandError)
        self._commands.append(ProviderCommand("play_message", call_connection_id, message))

    async def hang_up(self, call_connection_id: str) -> None:
        self._check_failure("hang_up", MediaCommandError)
        self._commands.append(ProviderCommand("hang_up", call_connection_id))
