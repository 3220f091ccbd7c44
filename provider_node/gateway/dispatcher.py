# provider_node/gateway/dispatcher.py
"""
Metered dispatch of one inbound API call.

The payment claim has already been verified by the payment middleware by the
time a call gets here. The dispatcher then:

1. validates the call shape ({"api": str, "params": object})
2. looks up the registered handler
3. checks the claimed amount against the API's price
4. runs the handler against its timeout, cancelling it if the timer wins
5. records the outcome and fires a non-blocking heartbeat on success

Every non-success outcome is raised as a CallError subclass.
"""
import asyncio
import inspect
import logging
from concurrent.futures import ThreadPoolExecutor
from contextlib import suppress
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Set

from provider_node.core.errors import (
    BadRequestError,
    HandlerExecutionError,
    HandlerNotFoundError,
    HandlerTimeoutError,
    InsufficientPaymentError,
)
from provider_node.gateway.context import CallContext
from provider_node.gateway.handlers import HandlerRegistration, HandlerRegistry
from provider_node.gateway.stats import StatsAggregator

logger = logging.getLogger(__name__)

DEFAULT_HANDLER_TIMEOUT_SECONDS = 30.0
DEFAULT_HANDLER_WORKERS = 8


@dataclass(frozen=True)
class CallResult:
    data: Any
    request_id: str
    latency: int
    cost: float
    timestamp: str


def validate_call_body(body: Any) -> tuple:
    """
    Extract (api, params) from a call body.

    Raises:
        BadRequestError: If `api` is not a non-empty string or `params` is not an object
    """
    if not isinstance(body, Mapping):
        raise BadRequestError("Missing or invalid API name")

    api = body.get("api")
    if not api or not isinstance(api, str):
        raise BadRequestError("Missing or invalid API name")

    params = body.get("params")
    if params is None or not isinstance(params, Mapping):
        raise BadRequestError("Missing or invalid params")

    return api, params


class MeteredDispatcher:
    """Runs calls against a HandlerRegistry and accounts for them."""

    def __init__(
        self,
        handlers: HandlerRegistry,
        stats: StatsAggregator,
        registry_client=None,
        default_timeout: float = DEFAULT_HANDLER_TIMEOUT_SECONDS,
        max_workers: int = DEFAULT_HANDLER_WORKERS,
    ):
        self.handlers = handlers
        self.stats = stats
        self.registry_client = registry_client
        self.default_timeout = default_timeout
        self.max_workers = max_workers
        self._executor: Optional[ThreadPoolExecutor] = None
        # Strong references to in-flight heartbeat tasks
        self._background: Set[asyncio.Task] = set()

    async def dispatch(self, context: CallContext, body: Any) -> CallResult:
        api, params = validate_call_body(body)

        registration = self.handlers.get(api)
        if registration is None:
            # Counted as an error even though no handler ran
            self.stats.record_failure()
            raise HandlerNotFoundError(api)

        if context.payment.amount_paid < registration.price:
            logger.info(
                f"[{context.request_id}] Insufficient payment for {api}: "
                f"required {registration.price}, received {context.payment.amount_paid}"
            )
            raise InsufficientPaymentError(
                required=registration.price,
                received=context.payment.amount_paid
            )

        result = await self._execute(context, registration, params)

        latency = context.elapsed_ms()
        snapshot = self.stats.record_success(registration.price, latency)
        self._send_heartbeat({
            "latency": latency,
            "requestsServed": snapshot.requests_served,
            "errors": snapshot.error_count,
        })

        return CallResult(
            data=result,
            request_id=context.request_id,
            latency=latency,
            cost=registration.price,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )

    async def _execute(self, context: CallContext, registration: HandlerRegistration, params: Mapping[str, Any]) -> Any:
        timeout = registration.timeout or self.default_timeout
        task = asyncio.ensure_future(self._invoke(registration, params))
        try:
            done, _ = await asyncio.wait({task}, timeout=timeout)
        except asyncio.CancelledError:
            task.cancel()
            raise

        if not done:
            # The timer won; cancel the handler and wait for it to unwind
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
            self.stats.record_failure()
            logger.error(f"[{context.request_id}] Handler {registration.name} timed out after {timeout}s")
            raise HandlerTimeoutError(registration.name, timeout)

        try:
            return task.result()
        except Exception as e:
            # Includes a TimeoutError raised by the handler itself
            self.stats.record_failure()
            logger.error(f"[{context.request_id}] Handler {registration.name} failed: {e}", exc_info=True)
            raise HandlerExecutionError(registration.name, str(e) or type(e).__name__) from e

    async def _invoke(self, registration: HandlerRegistration, params: Mapping[str, Any]) -> Any:
        handler = registration.handler
        if inspect.iscoroutinefunction(handler):
            return await handler(params)
        # Blocking handlers get their own pool; a timeout abandons them there
        # without tying up the default executor used for chain and registry I/O
        loop = asyncio.get_running_loop()
        result = await loop.run_in_executor(self._handler_executor(), handler, params)
        if inspect.isawaitable(result):
            result = await result
        return result

    def _handler_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.max_workers,
                thread_name_prefix="api-handler",
            )
        return self._executor

    def _send_heartbeat(self, health: dict) -> None:
        """Schedule a best-effort heartbeat without waiting for it."""
        if self.registry_client is None:
            return
        task = asyncio.create_task(self.registry_client.heartbeat(health))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def drain(self) -> None:
        """Wait for heartbeats scheduled by completed calls."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    def close(self) -> None:
        """Release the sync-handler pool without waiting for abandoned handlers."""
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None
