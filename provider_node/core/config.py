# provider_node/core/config.py
from typing import List, Optional
from pydantic_settings import BaseSettings
from pydantic import AnyHttpUrl # AnyHttpUrl stays in pydantic core
from functools import lru_cache
from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()

class Settings(BaseSettings):
    PROJECT_NAME: str = "x402 Provider Node"

    # Identity
    PROVIDER_WALLET_PATH: Optional[str] = None

    # Listener
    PROVIDER_HOST: str = "0.0.0.0"
    PROVIDER_PORT: int = 9000
    PROVIDER_PUBLIC_URL: Optional[AnyHttpUrl] = None

    # Registry (discovery service)
    REGISTRY_URL: AnyHttpUrl = "http://localhost:3000/api"
    REGISTRY_TIMEOUT_SECONDS: float = 10.0
    HEARTBEAT_INTERVAL_SECONDS: float = 60.0

    # Payments; the first chain is the primary one
    PROVIDER_CHAINS: List[str] = ["solana"]
    DEFAULT_PRICE_USD: float = 0.0
    SOLANA_RPC_URL: AnyHttpUrl = "https://api.mainnet-beta.solana.com"
    USDC_MINT: str = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
    PAYMENT_TOKEN_DECIMALS: int = 6
    CHAIN_QUERY_TIMEOUT_SECONDS: float = 10.0

    # Dispatch
    DEFAULT_HANDLER_TIMEOUT_SECONDS: float = 30.0
    HANDLER_WORKERS: int = 8

    LOGGING_ENABLED: bool = True

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignore extra fields from .env

    @property
    def primary_chain(self) -> str:
        return self.PROVIDER_CHAINS[0]

    @property
    def advertised_url(self) -> str:
        if self.PROVIDER_PUBLIC_URL:
            return str(self.PROVIDER_PUBLIC_URL).rstrip("/")
        return f"http://localhost:{self.PROVIDER_PORT}"

@lru_cache() # Cache the settings object for performance
def get_settings() -> Settings:
    return Settings()

settings = get_settings()
