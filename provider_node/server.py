# provider_node/server.py
"""
Provider server: a FastAPI app exposing registered APIs behind the x402
payment gate, registered with the discovery registry for its lifetime.
"""
import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from provider_node.api.endpoints import call, health
from provider_node.core.config import Settings, settings as default_settings
from provider_node.core.errors import ConfigurationError, ProviderNodeError
from provider_node.core.wallet import Wallet, load_wallet
from provider_node.gateway.dispatcher import MeteredDispatcher
from provider_node.gateway.handlers import APIHandler, HandlerRegistration, HandlerRegistry
from provider_node.gateway.stats import ServerStats, StatsAggregator
from provider_node.services.registry_client import RegistryLifecycleClient
from provider_node.x402.middleware import PaymentMiddleware
from provider_node.x402.verifier import PaymentVerifier, parse_chain

logger = logging.getLogger(__name__)


class ProviderServer:
    """
    A provider node.

    Add APIs with add_api() before starting; the registry is told about every
    API registered at startup. `verifier` and `registry_client` can be
    supplied to replace the ones built from settings.
    """

    def __init__(
        self,
        config: Optional[Settings] = None,
        wallet: Optional[Wallet] = None,
        verifier: Optional[PaymentVerifier] = None,
        registry_client: Optional[RegistryLifecycleClient] = None,
    ):
        self.config = config or default_settings
        self.chains = [c.lower() for c in self.config.PROVIDER_CHAINS]
        if not self.chains:
            raise ConfigurationError("At least one payment chain must be configured")
        unknown = [c for c in self.chains if parse_chain(c) is None]
        if unknown:
            raise ConfigurationError(f"Unknown payment chains configured: {unknown}")

        if wallet is None:
            if not self.config.PROVIDER_WALLET_PATH:
                raise ConfigurationError("PROVIDER_WALLET_PATH is not configured")
            wallet = load_wallet(self.config.PROVIDER_WALLET_PATH)
        self.wallet = wallet

        self.handlers = HandlerRegistry()
        self.stats = StatsAggregator()
        self.verifier = verifier or PaymentVerifier(self.chains, config=self.config)
        self.registry_client = registry_client or RegistryLifecycleClient(
            str(self.config.REGISTRY_URL),
            provider_id=self.wallet.public_key,
            heartbeat_interval=self.config.HEARTBEAT_INTERVAL_SECONDS,
            timeout=self.config.REGISTRY_TIMEOUT_SECONDS,
        )
        if self.registry_client.health_provider is None:
            self.registry_client.health_provider = lambda: self.stats.snapshot().heartbeat_payload()

        self.dispatcher = MeteredDispatcher(
            self.handlers,
            self.stats,
            registry_client=self.registry_client,
            default_timeout=self.config.DEFAULT_HANDLER_TIMEOUT_SECONDS,
            max_workers=self.config.HANDLER_WORKERS,
        )
        self.app = self._create_app()

    def add_api(
        self,
        name: str,
        handler: APIHandler,
        price: Optional[float] = None,
        timeout: Optional[float] = None,
        rate_limit: Optional[int] = None,
    ) -> HandlerRegistration:
        """Bind `handler` to `name`. Re-adding a name replaces it."""
        registration = HandlerRegistration(
            name=name,
            handler=handler,
            price=self.config.DEFAULT_PRICE_USD if price is None else price,
            timeout=timeout,
            rate_limit=rate_limit,
        )
        return self.handlers.register(registration)

    def get_stats(self) -> ServerStats:
        return self.stats.snapshot()

    @asynccontextmanager
    async def lifespan(self, app: FastAPI):
        # Registration failure propagates and aborts startup
        await self.registry_client.register(
            apis=self.handlers.names(),
            url=self.config.advertised_url,
            prices=self.handlers.price_table(),
            chains=self.chains,
        )
        logger.info(f"Provider node ready; earnings wallet: {self.wallet.public_key}")
        try:
            yield
        finally:
            await self.dispatcher.drain()
            await self.registry_client.unregister()
            self.dispatcher.close()
            logger.info("Server stopped")

    def _create_app(self) -> FastAPI:
        app = FastAPI(title=self.config.PROJECT_NAME, lifespan=self.lifespan)
        app.state.dispatcher = self.dispatcher
        app.state.wallet_address = self.wallet.public_key
        app.state.chains = self.chains

        app.include_router(health.router, tags=["default"])
        app.include_router(call.router, tags=["call"])

        # Starlette runs the last-added middleware first
        app.add_middleware(
            PaymentMiddleware,
            verifier=self.verifier,
            recipient=self.wallet.public_key,
            primary_chain=self.config.primary_chain,
        )
        if self.config.LOGGING_ENABLED:
            app.middleware("http")(log_requests)
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["*"],
            allow_headers=["*"],
        )
        return app

    async def serve(self) -> None:
        """Serve until interrupted."""
        server = uvicorn.Server(uvicorn.Config(
            self.app,
            host=self.config.PROVIDER_HOST,
            port=self.config.PROVIDER_PORT,
            log_level="info",
        ))
        logger.info(f"Provider node starting on port {self.config.PROVIDER_PORT}")
        await server.serve()
        if server.should_exit and not server.started:
            raise ProviderNodeError("Failed to start server")

    def run(self) -> None:
        """Blocking variant of serve()."""
        asyncio.run(self.serve())


async def log_requests(request: Request, call_next):
    start = time.monotonic()
    response = await call_next(request)
    duration = int((time.monotonic() - start) * 1000)
    logger.info(f"{request.method} {request.url.path} - {response.status_code} ({duration}ms)")
    return response
