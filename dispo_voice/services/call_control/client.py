"""Telnyx Call Control client."""
import base64
import json
import logging
from typing import Any, Dict, Optional

import httpx

from dispo_voice.services.call_control.models import CommandAck
from dispo_voice.services.exceptions import UpstreamError, UpstreamUnavailable

logger = logging.getLogger(__name__)


def encode_client_state(state: Dict[str, Any]) -> str:
    """Encode a client_state dict the way the platform echoes it back."""
    return base64.b64encode(json.dumps(state).encode("utf-8")).decode("ascii")


class TelnyxCallControlClient:
    """
    Thin authenticated wrapper around the Telnyx Call Control REST API.

    Every command is a single POST bounded by ``timeout``. Non-2xx responses
    raise ``UpstreamError`` with the platform's response text, network errors
    and timeouts raise ``UpstreamUnavailable``. Nothing is retried here.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.telnyx.com/v2",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def _get_headers(self) -> dict:
        """Get API headers."""
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def _post(self, path: str, body: Dict[str, Any], action: str) -> Dict[str, Any]:
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(url, headers=self._get_headers(), json=body)
        except httpx.TimeoutException as e:
            logger.error(f"[CALL CONTROL] {action} timed out after {self.timeout}s - URL: {url}")
            raise UpstreamUnavailable(f"Call control {action} timed out") from e
        except httpx.TransportError as e:
            logger.error(f"[CALL CONTROL] {action} network error - URL: {url}, Error: {type(e).__name__}: {e}")
            raise UpstreamUnavailable(f"Call control {action} unreachable") from e

        if response.is_error:
            detail = response.text
            logger.error(
                f"[CALL CONTROL] {action} rejected - Status: {response.status_code}, Detail: {detail}"
            )
            raise UpstreamError(response.status_code, detail, action=action)

        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            return {}
        return payload.get("data") or {}

    async def _leg_action(
        self, leg_id: str, action: str, body: Dict[str, Any]
    ) -> CommandAck:
        data = await self._post(f"calls/{leg_id}/actions/{action}", body, action)
        logger.debug(f"[CALL CONTROL] {action} acknowledged - Leg: {leg_id}, Data: {data}")
        return CommandAck(
            leg_id=leg_id,
            action=action,
            command_id=body.get("command_id"),
            result=data.get("result"),
            data=data,
        )

    async def dial(
        self,
        to: str,
        from_: str,
        connection_id: str,
        webhook_url: Optional[str] = None,
        client_state: Optional[Dict[str, Any]] = None,
        command_id: Optional[str] = None,
    ) -> str:
        """
        Dial a new outbound leg.

        Returns the allocated call_control_id. The leg is not answered yet;
        answering is reported later by webhook.
        """
        body: Dict[str, Any] = {
            "connection_id": connection_id,
            "to": to,
            "from": from_,
        }
        if webhook_url:
            body["webhook_url"] = webhook_url
        if client_state:
            body["client_state"] = encode_client_state(client_state)
        if command_id:
            body["command_id"] = command_id

        data = await self._post("calls", body, "dial")
        leg_id = data.get("call_control_id")
        if not leg_id:
            raise UpstreamError(200, f"Dial response missing call_control_id: {data}", action="dial")
        logger.info(f"[CALL CONTROL] Dialed {to} - Leg: {leg_id}")
        return leg_id

    async def bridge(self, leg_id: str, target_leg_id: str, command_id: str) -> CommandAck:
        """Bridge ``leg_id`` with ``target_leg_id`` into one audio path."""
        return await self._leg_action(
            leg_id, "bridge", {"call_control_id": target_leg_id, "command_id": command_id}
        )

    async def transfer(self, leg_id: str, to: str, command_id: str) -> CommandAck:
        """Redirect a leg to a new destination."""
        return await self._leg_action(leg_id, "transfer", {"to": to, "command_id": command_id})

    async def hangup(self, leg_id: str, command_id: Optional[str] = None) -> CommandAck:
        """Terminate a leg."""
        body = {"command_id": command_id} if command_id else {}
        return await self._leg_action(leg_id, "hangup", body)

    async def playback_start(
        self,
        leg_id: str,
        audio_url: str,
        command_id: Optional[str] = None,
        loop: str = "infinity",
        target_legs: str = "both",
    ) -> CommandAck:
        """Start looping audio (hold music) on a leg."""
        body: Dict[str, Any] = {"audio_url": audio_url, "loop": loop, "target_legs": target_legs}
        if command_id:
            body["command_id"] = command_id
        return await self._leg_action(leg_id, "playback_start", body)

    async def playback_stop(self, leg_id: str, command_id: Optional[str] = None) -> CommandAck:
        """Stop hold music or announcement playback on a leg."""
        body = {"command_id": command_id} if command_id else {}
        return await self._leg_action(leg_id, "playback_stop", body)

    async def record_start(
        self, leg_id: str, channels: str = "single", command_id: Optional[str] = None
    ) -> CommandAck:
        """Start recording a leg. ``channels`` is "single" or "dual"."""
        body: Dict[str, Any] = {"format": "mp3", "channels": channels}
        if command_id:
            body["command_id"] = command_id
        return await self._leg_action(leg_id, "record_start", body)
