import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from .models import (
    DOMAIN_ADAPTERS,
    Bans,
    Coalition,
    Coalitions,
    FrequencySettings,
    GeneralSettings,
    Notification,
    Roster,
    ServerSettings,
    ServerStatus,
    SettingsState,
)

logger = logging.getLogger(__name__)


class RemoteError(Exception):
    """A pull or command against the VCS server failed."""

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class CircuitBreaker:
    """Simple circuit breaker: open after N failures, half-open after cooldown."""

    threshold: int = 5
    cooldown: float = 30.0
    failure_count: int = field(default=0, init=False)
    last_failure: float = field(default=0.0, init=False)
    state: str = field(default="closed", init=False)  # closed | open | half-open

    def record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure = time.monotonic()
        if self.failure_count >= self.threshold:
            self.state = "open"
            logger.warning("Circuit breaker OPEN after %d failures", self.failure_count)

    def record_success(self) -> None:
        self.failure_count = 0
        self.state = "closed"

    def allow_request(self) -> bool:
        if self.state == "closed":
            return True
        if self.state == "open":
            if time.monotonic() - self.last_failure > self.cooldown:
                self.state = "half-open"
                return True
            return False
        # half-open: allow one probe
        return True


class RemoteFacade:
    """Async HTTP access to the VCS server: domain pulls and admin commands."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10.0,
        max_retries: int = 3,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._max_retries = max(1, max_retries)
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self.breaker = CircuitBreaker()

    @property
    def base_url(self) -> str:
        return self._base_url

    async def start(self) -> None:
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            follow_redirects=True,
            transport=self._transport,
            limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
        )

    async def stop(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    def _require_client(self) -> httpx.AsyncClient:
        """Return initialized client or raise a clear runtime error."""
        if self._client is None:
            raise RuntimeError("Remote facade is not started")
        return self._client

    async def request(self, method: str, path: str, **kwargs) -> Any:
        """Send request with retry + circuit breaker; return the decoded JSON body."""
        if not self.breaker.allow_request():
            raise RemoteError(f"Circuit breaker open for {self._base_url}")

        delays = [0.5, 1.0, 2.0]
        resp: httpx.Response | None = None
        for attempt in range(self._max_retries):
            try:
                resp = await self._require_client().request(method, path, **kwargs)
                break
            except (httpx.ConnectError, httpx.ConnectTimeout) as e:
                self.breaker.record_failure()
                if attempt >= self._max_retries - 1:
                    raise RemoteError(f"{method} {path} failed: {e}") from e
                delay = delays[min(attempt, len(delays) - 1)]
                logger.warning(
                    "%s %s attempt %d failed: %s (retry in %.1fs)",
                    method, path, attempt + 1, e, delay,
                )
                await asyncio.sleep(delay)
            except httpx.HTTPError as e:
                self.breaker.record_failure()
                raise RemoteError(f"{method} {path} failed: {e}") from e

        self.breaker.record_success()
        if resp.status_code >= 400:
            detail = resp.text.strip()[:500] or f"status={resp.status_code}"
            raise RemoteError(
                f"{method} {path} failed ({resp.status_code}): {detail}",
                status_code=resp.status_code,
            )
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as e:
            raise RemoteError(f"{method} {path} returned invalid JSON", status_code=resp.status_code) from e

    async def _fetch(self, domain: str, path: str) -> Any:
        payload = await self.request("GET", path)
        try:
            return DOMAIN_ADAPTERS[domain].validate_python(payload)
        except ValidationError as e:
            raise RemoteError(f"GET {path} returned a malformed {domain} snapshot: {e}") from e

    async def _command(self, method: str, path: str, **kwargs) -> str | None:
        payload = await self.request(method, path, **kwargs)
        message = payload.get("message") if isinstance(payload, dict) else payload
        if message:
            logger.info("%s %s: %s", method, path, message)
        return str(message) if message else None

    # --- Pulls ---

    async def fetch_status(self) -> ServerStatus:
        return await self._fetch("status", "/status")

    async def fetch_settings(self) -> SettingsState:
        return await self._fetch("settings", "/settings")

    async def fetch_roster(self) -> Roster:
        payload = await self.request("GET", "/clients")
        if isinstance(payload, dict) and set(payload) == {"Clients"}:
            payload = payload["Clients"] or {}
        try:
            return DOMAIN_ADAPTERS["roster"].validate_python(payload)
        except ValidationError as e:
            raise RemoteError(f"GET /clients returned a malformed roster snapshot: {e}") from e

    async def fetch_coalitions(self) -> Coalitions:
        return await self._fetch("coalitions", "/coalitions")

    async def fetch_bans(self) -> Bans:
        return await self._fetch("bans", "/bans")

    # --- Commands ---

    async def start_server(self) -> str | None:
        return await self._command("POST", "/server/start")

    async def stop_server(self) -> str | None:
        return await self._command("POST", "/server/stop")

    async def kick(self, client_id: str, reason: str) -> str | None:
        return await self._command("POST", f"/clients/{quote(client_id, safe='')}/kick", json={"reason": reason})

    async def ban(self, client_id: str, reason: str) -> str | None:
        return await self._command("POST", f"/clients/{quote(client_id, safe='')}/ban", json={"reason": reason})

    async def unban(self, ban_id: str) -> str | None:
        return await self._command("DELETE", f"/bans/{quote(ban_id, safe='')}")

    async def mute(self, client_id: str) -> str | None:
        return await self._command("POST", f"/clients/{quote(client_id, safe='')}/mute")

    async def unmute(self, client_id: str) -> str | None:
        return await self._command("POST", f"/clients/{quote(client_id, safe='')}/unmute")

    async def add_coalition(self, coalition: Coalition) -> str | None:
        return await self._command("POST", "/coalitions", json=coalition.model_dump(by_alias=True))

    async def update_coalition(self, coalition: Coalition) -> str | None:
        return await self._command(
            "PUT", f"/coalitions/{quote(coalition.name, safe='')}", json=coalition.model_dump(by_alias=True)
        )

    async def remove_coalition(self, name: str) -> str | None:
        return await self._command("DELETE", f"/coalitions/{quote(name, safe='')}")

    async def save_general_settings(self, general: GeneralSettings) -> str | None:
        return await self._command("PUT", "/settings/general", json=general.model_dump(by_alias=True))

    async def save_server_settings(self, servers: ServerSettings) -> str | None:
        return await self._command("PUT", "/settings/servers", json=servers.model_dump(by_alias=True))

    async def save_frequencies(self, frequencies: FrequencySettings) -> str | None:
        return await self._command("PUT", "/settings/frequencies", json=frequencies.model_dump(by_alias=True))

    async def notify(self, notification: Notification) -> str | None:
        return await self._command("POST", "/notifications", json=notification.model_dump())

    async def health_check(self) -> dict:
        """Probe the server's status endpoint. Returns status dict."""
        try:
            resp = await self._require_client().get("/status", timeout=5.0)
            return {
                "status": "healthy" if resp.status_code == 200 else "unhealthy",
                "code": resp.status_code,
                "breaker": self.breaker.state,
            }
        except httpx.HTTPError as e:
            return {"status": "unreachable", "error": str(e), "breaker": self.breaker.state}
