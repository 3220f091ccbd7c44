# provider_node/main.py
import logging

from provider_node.core.config import settings
from provider_node.server import ProviderServer

# Configure basic logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def echo(params: dict) -> dict:
    """Demo API: returns its parameters unchanged."""
    return {"echo": params}


def create_server() -> ProviderServer:
    server = ProviderServer(settings)
    server.add_api("echo", echo, price=settings.DEFAULT_PRICE_USD)
    return server


def main() -> None:
    server = create_server()
    logger.info(f"Serving {server.handlers.names()} for wallet {server.wallet.public_key}")
    server.run()


if __name__ == "__main__":
    main()
