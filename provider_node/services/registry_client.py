# provider_node/services/registry_client.py
"""
Client for the discovery registry.

The node registers once before it serves traffic, reports health through
heartbeats while it runs, and unregisters on shutdown. Only registration is
allowed to fail loudly; heartbeat and unregister failures are logged and
swallowed so registry outages never affect request serving.
"""
import asyncio
import logging
from contextlib import suppress
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional
from urllib.parse import urljoin

import requests
from requests.exceptions import RequestException

from provider_node.core.errors import RegistryCommunicationError

logger = logging.getLogger(__name__)

DEFAULT_HEARTBEAT_INTERVAL_SECONDS = 60.0
DEFAULT_REGISTRY_TIMEOUT_SECONDS = 10.0

HealthProvider = Callable[[], Mapping[str, Any]]


def zeroed_health() -> Dict[str, Any]:
    return {"latency": 0, "requestsServed": 0, "errors": 0}


class RegistryLifecycleClient:
    """
    Owns registration state and the periodic heartbeat task for one provider.

    The heartbeat task is started by a successful register() and stopped by
    unregister(). Both start and stop are idempotent.
    """

    def __init__(
        self,
        registry_url: str,
        provider_id: str,
        heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL_SECONDS,
        timeout: float = DEFAULT_REGISTRY_TIMEOUT_SECONDS,
        health_provider: Optional[HealthProvider] = None,
    ):
        self.registry_url = str(registry_url).rstrip("/") + "/"
        self.provider_id = provider_id
        self.heartbeat_interval = heartbeat_interval
        self.timeout = timeout
        self.health_provider = health_provider
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def heartbeat_running(self) -> bool:
        return self._heartbeat_task is not None and not self._heartbeat_task.done()

    def _post(self, path: str, payload: Dict[str, Any]) -> requests.Response:
        return requests.post(
            urljoin(self.registry_url, path),
            json=payload,
            headers={"Content-Type": "application/json"},
            timeout=self.timeout
        )

    async def register(
        self,
        apis: List[str],
        url: str,
        prices: Mapping[str, float],
        chains: List[str],
    ) -> None:
        """
        Register this provider and start the heartbeat.

        Raises:
            RegistryCommunicationError: If the registry is unreachable or
                answers with a non-success status. The node must not serve.
        """
        payload = {
            "providerId": self.provider_id,
            "apis": list(apis),
            "url": url,
            "prices": dict(prices),
            "chains": list(chains),
        }
        try:
            response = await asyncio.to_thread(self._post, "register", payload)
        except RequestException as e:
            logger.error(f"Failed to register with registry ({self.registry_url}): {e}")
            raise RegistryCommunicationError(f"Failed to register: {e}") from e

        if not response.ok:
            logger.error(f"Registry rejected registration: {response.status_code} {response.text}")
            raise RegistryCommunicationError(f"Registration failed: {response.text}")

        logger.info(f"Registered with registry: {self.registry_url} ({len(payload['apis'])} APIs)")
        self._closed = False
        self.start_heartbeat()

    async def heartbeat(self, health: Mapping[str, Any]) -> bool:
        """
        Send one health snapshot. Never raises.

        Returns True when the registry acknowledged it. Heartbeats requested
        after unregister() are dropped.
        """
        if self._closed:
            logger.debug("Heartbeat skipped: provider is unregistered")
            return False

        payload = {
            "providerId": self.provider_id,
            **health,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        try:
            response = await asyncio.to_thread(self._post, "heartbeat", payload)
        except Exception as e:
            # Heartbeat failures must not stop the server
            logger.error(f"Heartbeat failed: {e}")
            return False

        if not response.ok:
            logger.error(f"Heartbeat rejected: {response.status_code} {response.text}")
            return False
        return True

    def start_heartbeat(self) -> None:
        """Begin the periodic heartbeat. A second call is a no-op."""
        if self.heartbeat_running:
            logger.debug("Heartbeat already running")
            return
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())

    async def stop_heartbeat(self) -> None:
        """Cancel the periodic heartbeat and wait until it has stopped."""
        task, self._heartbeat_task = self._heartbeat_task, None
        if task is None:
            return
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task

    async def unregister(self) -> None:
        """Stop heartbeats, then tell the registry once. Never raises."""
        already_closed = self._closed
        self._closed = True
        await self.stop_heartbeat()

        if already_closed:
            return

        try:
            response = await asyncio.to_thread(self._post, "unregister", {"providerId": self.provider_id})
            if not response.ok:
                logger.error(f"Failed to unregister: {response.status_code} {response.text}")
            else:
                logger.info(f"Unregistered {self.provider_id} from registry")
        except Exception as e:
            logger.error(f"Failed to unregister: {e}")

    def _current_health(self) -> Dict[str, Any]:
        if self.health_provider is None:
            return zeroed_health()
        try:
            return dict(self.health_provider())
        except Exception as e:
            logger.error(f"Could not collect health snapshot: {e}")
            return zeroed_health()

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            await self.heartbeat(self._current_health())
