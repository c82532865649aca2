"""
Calls to the charging vendor's REST API with the bearer token from the session manager.
401/403 drops the token so the next call logs in again; no retry here, since repeated
logins against the identity provider risk an account lockout.
"""
import logging
from urllib.parse import quote

import httpx

from charge_gateway.config import DEFAULT_HTTP_TIMEOUT
from charge_gateway.errors import NotFoundError, VendorAuthorizationError, VendorError
from charge_gateway.session_manager import SessionManager

logger = logging.getLogger(__name__)


def _active_session_id(payload) -> str | None:
    """Session id from the active-session payload: an object, a list, or either wrapped in data/sessions/items."""
    if isinstance(payload, dict):
        for key in ("data", "sessions", "items"):
            if key in payload:
                payload = payload[key]
                break
    if isinstance(payload, list):
        payload = payload[0] if payload else None
    if not isinstance(payload, dict):
        return None
    session_id = payload.get("sessionId") or payload.get("id")
    return str(session_id) if session_id else None


class VendorClient:
    def __init__(
        self,
        *,
        base_url: str,
        charger_id: str,
        session_manager: SessionManager,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.charger_id = charger_id
        self.session_manager = session_manager
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def get_charger_status(self, charger_id: str) -> dict:
        """Charger/EVSE status payload, returned as the vendor sends it."""
        response = await self._request("GET", f"/chargers/{quote(charger_id, safe='')}")
        return self._payload(response)

    async def start_session(self, evse_id: str) -> dict:
        response = await self._request("POST", "/sessions", json={"evseId": evse_id})
        return self._payload(response)

    async def stop_session(self) -> dict:
        """
        Stop the active session on the configured charger.
        Raises NotFoundError if the vendor reports no active session.
        """
        response = await self._request("GET", f"/chargers/{quote(self.charger_id, safe='')}/sessions/active")
        if response.status_code == 404:
            raise NotFoundError(f"No active session on charger {self.charger_id}")
        session_id = _active_session_id(self._payload(response))
        if session_id is None:
            raise NotFoundError(f"No active session on charger {self.charger_id}")
        logger.info("Stopping session %s on charger %s", session_id, self.charger_id)
        response = await self._request("POST", f"/sessions/{quote(session_id, safe='')}/stop")
        return self._payload(response)

    async def _request(self, method: str, path: str, *, json: dict | None = None) -> httpx.Response:
        token = await self.session_manager.get_valid_token()
        try:
            response = await self._client.request(
                method,
                path,
                json=json,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as e:
            logger.error("Vendor API %s %s failed: %s", method, path, e)
            raise VendorError(502, str(e), f"Vendor API unreachable: {e.__class__.__name__}") from e
        if response.status_code in (401, 403):
            logger.warning("Vendor API %s %s returned %s", method, path, response.status_code)
            self.session_manager.invalidate(token)
            raise VendorAuthorizationError(response.status_code, response.text)
        return response

    @staticmethod
    def _payload(response: httpx.Response):
        if not response.is_success:
            raise VendorError(response.status_code, response.text)
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return {"raw": response.text}
