"""Unit tests for the Telnyx call-control client."""
import base64
import json

import httpx
import pytest

from dispo_voice.services.call_control.client import TelnyxCallControlClient, encode_client_state
from dispo_voice.services.exceptions import UpstreamError, UpstreamUnavailable


def make_client(handler, requests=None):
    """Build a client whose requests go to ``handler``."""
    def _handler(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(request)
        return handler(request)

    return TelnyxCallControlClient(
        api_key="test-key",
        base_url="https://api.telnyx.test/v2/",
        timeout=2.0,
        transport=httpx.MockTransport(_handler),
    )


def ok(data=None):
    return lambda request: httpx.Response(200, json={"data": data or {"result": "ok"}})


class TestCommands:
    """Test command requests sent to the platform."""

    @pytest.mark.asyncio
    async def test_transfer_posts_destination_and_command_id(self):
        """Test transfer targets the leg's transfer action with auth headers."""
        requests = []
        client = make_client(ok(), requests)

        ack = await client.transfer("C1", "+15551234567", "cmd-1")

        assert len(requests) == 1
        request = requests[0]
        assert request.method == "POST"
        assert str(request.url) == "https://api.telnyx.test/v2/calls/C1/actions/transfer"
        assert request.headers["Authorization"] == "Bearer test-key"
        assert json.loads(request.content) == {"to": "+15551234567", "command_id": "cmd-1"}
        assert ack.leg_id == "C1"
        assert ack.action == "transfer"
        assert ack.command_id == "cmd-1"
        assert ack.result == "ok"

    @pytest.mark.asyncio
    async def test_bridge_names_partner_leg(self):
        """Test bridge is sent on the leg with the partner in the body."""
        requests = []
        client = make_client(ok(), requests)

        await client.bridge("K1", "C1", "cmd-2")

        assert str(requests[0].url).endswith("/calls/K1/actions/bridge")
        assert json.loads(requests[0].content) == {"call_control_id": "C1", "command_id": "cmd-2"}

    @pytest.mark.asyncio
    async def test_hangup_and_playback_stop(self):
        """Test hangup and playback_stop hit their actions."""
        requests = []
        client = make_client(ok(), requests)

        await client.playback_stop("A1")
        await client.hangup("A1", command_id="cmd-3")

        assert str(requests[0].url).endswith("/calls/A1/actions/playback_stop")
        assert str(requests[1].url).endswith("/calls/A1/actions/hangup")
        assert json.loads(requests[1].content) == {"command_id": "cmd-3"}

    @pytest.mark.asyncio
    async def test_playback_start_loops_hold_music(self):
        """Test playback_start loops the audio to both sides."""
        requests = []
        client = make_client(ok(), requests)

        await client.playback_start("C1", "https://crm.test/hold.mp3")

        body = json.loads(requests[0].content)
        assert body["audio_url"] == "https://crm.test/hold.mp3"
        assert body["loop"] == "infinity"
        assert body["target_legs"] == "both"

    @pytest.mark.asyncio
    async def test_record_start_channels(self):
        """Test record_start sends the channel mode."""
        requests = []
        client = make_client(ok(), requests)

        await client.record_start("C1", channels="dual")

        assert str(requests[0].url).endswith("/calls/C1/actions/record_start")
        assert json.loads(requests[0].content) == {"format": "mp3", "channels": "dual"}

    @pytest.mark.asyncio
    async def test_dial_returns_new_leg_id(self):
        """Test dial posts to /calls and returns the allocated leg."""
        requests = []
        client = make_client(ok({"call_control_id": "K1", "call_leg_id": "leg-1"}), requests)

        leg_id = await client.dial(
            to="+15551234567",
            from_="+15550000000",
            connection_id="app-1",
            client_state={"purpose": "attended_transfer_consult", "session_id": "s1"},
            command_id="cmd-4",
        )

        assert leg_id == "K1"
        assert str(requests[0].url) == "https://api.telnyx.test/v2/calls"
        body = json.loads(requests[0].content)
        assert body["to"] == "+15551234567"
        assert body["from"] == "+15550000000"
        assert body["connection_id"] == "app-1"
        assert body["command_id"] == "cmd-4"
        decoded = json.loads(base64.b64decode(body["client_state"]))
        assert decoded == {"purpose": "attended_transfer_consult", "session_id": "s1"}

    @pytest.mark.asyncio
    async def test_dial_without_leg_id_is_upstream_error(self):
        """Test a dial response without call_control_id is rejected."""
        client = make_client(ok({"result": "ok"}))

        with pytest.raises(UpstreamError):
            await client.dial(to="+15551234567", from_="+15550000000", connection_id="app-1")

    def test_encode_client_state(self):
        """Test client state is base64 JSON."""
        encoded = encode_client_state({"a": 1})
        assert json.loads(base64.b64decode(encoded)) == {"a": 1}


class TestFailures:
    """Test error mapping."""

    @pytest.mark.asyncio
    async def test_non_2xx_raises_upstream_error(self):
        """Test platform rejections carry status and detail."""
        client = make_client(
            lambda request: httpx.Response(422, text='{"errors":[{"detail":"Invalid destination"}]}')
        )

        with pytest.raises(UpstreamError) as exc_info:
            await client.transfer("C1", "not-a-number", "cmd-1")

        assert exc_info.value.status == 422
        assert exc_info.value.status_code == 422
        assert "Invalid destination" in exc_info.value.detail

    @pytest.mark.asyncio
    async def test_timeout_raises_upstream_unavailable(self):
        """Test timeouts map to UpstreamUnavailable."""
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        client = make_client(handler)

        with pytest.raises(UpstreamUnavailable) as exc_info:
            await client.hangup("A1")

        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_network_error_raises_upstream_unavailable(self):
        """Test connection failures map to UpstreamUnavailable."""
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = make_client(handler)

        with pytest.raises(UpstreamUnavailable):
            await client.playback_stop("A1")

    @pytest.mark.asyncio
    async def test_failures_are_not_retried(self):
        """Test each command is sent exactly once even when it fails."""
        requests = []
        client = make_client(lambda request: httpx.Response(500, text="boom"), requests)

        with pytest.raises(UpstreamError):
            await client.bridge("K1", "C1", "cmd-1")

        assert len(requests) == 1
