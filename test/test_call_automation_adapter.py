"""Tests for the call automation REST adapter."""

import json
from collections.abc import Callable

import httpx
import pytest

from outreach.telephony.adapters.call_automation import CallAutomationProvider
from outreach.telephony.config import ProviderType, TelephonyConfig
from outreach.telephony.interface import (
    CallPlacementError,
    CallPlacementRequest,
    MediaCommandError,
    RecognitionRequest,
)

Handler = Callable[[httpx.Request], httpx.Response]


@pytest.fixture
def config() -> TelephonyConfig:
    return TelephonyConfig(
        provider_type=ProviderType.CALL_AUTOMATION,
        endpoint="https://calls.example.org/",
        access_key="test-key",
        api_version="2023-10-15",
        from_number="+14155550000",
        callback_base_url="https://outreach.example.org",
    )


@pytest.fixture
def call_request() -> CallPlacementRequest:
    return CallPlacementRequest(
        to="+14155551234",
        from_number="+14155550000",
        callback_url="https://outreach.example.org/api/calls/events",
        call_session_id=5,
    )


def _provider(
    config: TelephonyConfig,
    handler: Handler,
    seen: list[httpx.Request],
) -> CallAutomationProvider:
    def _record(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    return CallAutomationProvider(
        config,
        voice_name="en-US-TestNeural",
        transport=httpx.MockTransport(_record),
    )


class TestCreateCall:
    @pytest.mark.asyncio
    async def test_create_call_success(
        self,
        config: TelephonyConfig,
        call_request: CallPlacementRequest,
    ) -> None:
        seen: list[httpx.Request] = []
        provider = _provider(
            config,
            lambda r: httpx.Response(201, json={"callConnectionId": "conn-abc"}),
            seen,
        )

        response = await provider.create_call(call_request)
        await provider.aclose()

        assert response.call_connection_id == "conn-abc"
        request = seen[0]
        assert request.method == "POST"
        assert request.url.path == "/calling/callConnections"
        assert request.url.params["api-version"] == "2023-10-15"
        assert request.headers["Authorization"] == "Bearer test-key"
        body = json.loads(request.content)
        assert body["targets"][0]["phoneNumber"]["value"] == "+14155551234"
        assert body["sourceCallerIdNumber"]["value"] == "+14155550000"
        assert body["callbackUri"] == call_request.callback_url
        assert body["operationContext"] == "5"

    @pytest.mark.asyncio
    async def test_http_error(
        self,
        config: TelephonyConfig,
        call_request: CallPlacementRequest,
    ) -> None:
        provider = _provider(
            config,
            lambda r: httpx.Response(
                400,
                json={"error": {"code": "InvalidPhoneNumber", "message": "bad number"}},
            ),
            [],
        )

        with pytest.raises(CallPlacementError) as exc_info:
            await provider.create_call(call_request)

        assert exc_info.value.error_code == "InvalidPhoneNumber"
        assert exc_info.value.provider_response["error"]["message"] == "bad number"

    @pytest.mark.asyncio
    async def test_network_error(
        self,
        config: TelephonyConfig,
        call_request: CallPlacementRequest,
    ) -> None:
        def _fail(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        provider = _provider(config, _fail, [])

        with pytest.raises(CallPlacementError, match="request failed"):
            await provider.create_call(call_request)

    @pytest.mark.asyncio
    async def test_missing_connection_id(
        self,
        config: TelephonyConfig,
        call_request: CallPlacementRequest,
    ) -> None:
        provider = _provider(config, lambda r: httpx.Response(201, json={}), [])

        with pytest.raises(CallPlacementError, match="missing callConnectionId"):
            await provider.create_call(call_request)


class TestMediaCommands:
    @pytest.mark.asyncio
    async def test_start_recognition(self, config: TelephonyConfig) -> None:
        seen: list[httpx.Request] = []
        provider = _provider(config, lambda r: httpx.Response(202), seen)

        await provider.start_recognition(
            "conn-1",
            RecognitionRequest(
                prompt="Press 1 now.",
                initial_silence_timeout_seconds=5,
                operation_context="person-detection",
            ),
        )

        request = seen[0]
        assert request.url.path == "/calling/callConnections/conn-1:recognize"
        body = json.loads(request.content)
        assert body["recognizeInputType"] == "dtmf"
        assert body["playPrompt"]["text"] == {"text": "Press 1 now.", "voiceName": "en-US-TestNeural"}
        assert body["recognizeOptions"]["initialSilenceTimeoutInSeconds"] == 5
        assert body["recognizeOptions"]["dtmfOptions"]["maxTonesToCollect"] == 1
        assert body["operationContext"] == "person-detection"

    @pytest.mark.asyncio
    async def test_play_message(self, config: TelephonyConfig) -> None:
        seen: list[httpx.Request] = []
        provider = _provider(config, lambda r: httpx.Response(202), seen)

        await provider.play_message("conn-1", "Goodbye.")

        assert seen[0].url.path == "/calling/callConnections/conn-1:playToAll"
        body = json.loads(seen[0].content)
        assert body["playSources"][0]["text"]["text"] == "Goodbye."

    @pytest.mark.asyncio
    async def test_hang_up(self, config: TelephonyConfig) -> None:
        seen: list[httpx.Request] = []
        provider = _provider(config, lambda r: httpx.Response(204), seen)

        await provider.hang_up("conn-1")

        assert seen[0].url.path == "/calling/callConnections/conn-1:terminate"

    @pytest.mark.asyncio
    async def test_media_error(self, config: TelephonyConfig) -> None:
        provider = _provider(config, lambda r: httpx.Response(404, text="gone"), [])

        with pytest.raises(MediaCommandError) as exc_info:
            await provider.play_message("conn-1", "Hello")

        assert exc_info.value.error_code == "404"
        assert exc_info.value.provider_response == {"body": "gone"}
