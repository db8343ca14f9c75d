"""
Call automation REST telephony provider adapter.

Speaks the call-automation style API: calls are created on
``/calling/callConnections`` and media actions are posted to
``/calling/callConnections/{id}:<action>``. Prompts are rendered with
neural text-to-speech on the provider side.
"""

from datetime import datetime, timezone
from typing import Any

import httpx

from outreach.shared.logging import get_logger
from outreach.telephony.config import TelephonyConfig
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


class CallAutomationProvider(TelephonyProvider):
    """Telephony provider backed by a call automation REST endpoint."""

    def __init__(
        self,
        config: TelephonyConfig,
        voice_name: str = "en-US-JennyNeural",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the adapter.

        Args:
            config: Endpoint, credentials and timeouts.
            voice_name: Text-to-speech voice for every prompt.
            transport: Optional httpx transport override (tests).
        """
        self._config = config
        self._voice_name = voice_name
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self._config.endpoint.rstrip("/"),
                headers={"Authorization": f"Bearer {self._config.access_key}"},
                params={"api-version": self._config.api_version},
                timeout=self._config.request_timeout_seconds,
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        """Close HTTP client."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    def _text_source(self, text: str) -> dict[str, Any]:
        return {"kind": "text", "text": {"text": text, "voiceName": self._voice_name}}

    async def _post(
        self,
        path: str,
        body: dict[str, Any],
        error_cls: type[TelephonyProviderError],
        call_connection_id: str | None = None,
    ) -> dict[str, Any]:
        client = await self._get_client()
        try:
            response = await client.post(path, json=body)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            error_data: dict[str, Any] = {}
            try:
                error_data = e.response.json()
            except ValueError:
                error_data = {"body": e.response.text}

            logger.error(
                "Call automation request rejected",
                extra={
                    "path": path,
                    "call_connection_id": call_connection_id,
                    "status_code": e.response.status_code,
                    "error": error_data,
                },
            )
            error = error_data.get("error") if isinstance(error_data.get("error"), dict) else {}
            raise error_cls(
                f"Call automation API error: {e.response.status_code}",
                error_code=str(error.get("code", e.response.status_code)),
                provider_response=error_data,
            ) from e
        except httpx.RequestError as e:
            logger.error(
                "Call automation request failed",
                extra={"path": path, "call_connection_id": call_connection_id, "error": str(e)},
            )
            raise error_cls(f"Call automation request failed: {e}") from e

        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    async def create_call(self, request: CallPlacementRequest) -> CallPlacementResponse:
        """Place an outbound PSTN call.

        Raises:
            CallPlacementError: If the provider rejects the request or
                returns no connection ID.
        """
        body = {
            "targets": [{"kind": "phoneNumber", "phoneNumber": {"value": request.to}}],
            "sourceCallerIdNumber": {"value": request.from_number},
            "callbackUri": request.callback_url,
            "operationContext": str(request.call_session_id),
        }

        logger.info(
            "Placing call",
            extra={"call_session_id": request.call_session_id},
        )

        data = await self._post("/calling/callConnections", body, CallPlacementError)
        call_connection_id = data.get("callConnectionId")
        if not call_connection_id:
            raise CallPlacementError(
                "Call automation response missing callConnectionId",
                provider_response=data,
            )

        return CallPlacementResponse(
            call_connection_id=call_connection_id,
            created_at=datetime.now(timezone.utc),
            raw_response=data,
        )

    async def start_recognition(
        self,
        call_connection_id: str,
        request: RecognitionRequest,
    ) -> None:
        body: dict[str, Any] = {
            "recognizeInputType": "dtmf",
            "playPrompt": self._text_source(request.prompt),
            "interruptCallMediaOperation": request.interrupt_prompt,
            "recognizeOptions": {
                "interruptPrompt": request.interrupt_prompt,
                "initialSilenceTimeoutInSeconds": request.initial_silence_timeout_seconds,
                "targetParticipant": {"kind": "unknown"},
                "dtmfOptions": {
                    "interToneTimeoutInSeconds": request.inter_tone_timeout_seconds,
                    "maxTonesToCollect": request.max_tones,
                },
            },
        }
        if request.operation_context:
            body["operationContext"] = request.operation_context

        await self._post(
            f"/calling/callConnections/{call_connection_id}:recognize",
            body,
            MediaCommandError,
            call_connection_id,
        )

    async def play_message(self, call_connection_id: str, message: str) -> None:
        body = {"playSources": [self._text_source(message)]}
        await self._post(
            f"/calling/callConnections/{call_connection_id}:playToAll",
            body,
            MediaCommandError,
            call_connection_id,
        )

    async def hang_up(self, call_connection_id: str) -> None:
        await self._post(
            f"/calling/callConnections/{call_connection_id}:terminate",
            {},
            MediaCommandError,
            call_connection_id,
        )
