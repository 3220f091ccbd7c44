# provider_node/gateway/context.py
import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone

from provider_node.x402.verifier import PaymentClaim


def generate_request_id() -> str:
    """Generate a unique request ID for correlation in logs and responses."""
    return secrets.token_hex(16)


@dataclass(frozen=True)
class CallContext:
    """Per-call state threaded through authorize -> validate -> execute."""
    request_id: str
    payment: PaymentClaim
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    started: float = field(default_factory=time.monotonic)

    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started) * 1000)
