# provider_node/core/wallet.py
"""Loading of the node's Solana identity from a keypair file."""
import json
import logging
from dataclasses import dataclass
from pathlib import Path

import base58

from provider_node.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

KEYPAIR_LENGTH = 64


@dataclass(frozen=True)
class Wallet:
    """The node's earnings identity. Only the public half is ever exposed."""
    public_key: str


def public_key_from_secret(secret_key: bytes) -> str:
    """Derive the base58 public key from a 64-byte ed25519 keypair."""
    if len(secret_key) != KEYPAIR_LENGTH:
        raise ConfigurationError(
            f"Expected a {KEYPAIR_LENGTH}-byte keypair, got {len(secret_key)} bytes"
        )
    # Solana keypairs are the 32-byte seed followed by the 32-byte public key
    return base58.b58encode(secret_key[32:]).decode("ascii")


def load_wallet(path: str) -> Wallet:
    """
    Load a wallet from a Solana CLI keypair file (a JSON array of 64 ints).

    Raises:
        ConfigurationError: If the file is missing, unreadable or malformed.
    """
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        secret_key = bytes(raw)
    except (OSError, ValueError, TypeError) as e:
        raise ConfigurationError(f"Failed to load wallet from {path}: {e}") from e

    wallet = Wallet(public_key=public_key_from_secret(secret_key))
    logger.info(f"Loaded wallet {wallet.public_key} from {path}")
    return wallet
