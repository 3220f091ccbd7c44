# provider_node/core/errors.py
"""
Error taxonomy for the provider node.

Call-stage errors carry the HTTP status they map to, so the /call router can
turn them into responses without knowing which stage raised them.
"""
from typing import Optional


class ProviderNodeError(Exception):
    """Base provider node error."""


class ConfigurationError(ProviderNodeError):
    """Bad identity/wallet material or settings. Fatal at startup."""


class RegistryCommunicationError(ProviderNodeError):
    """The registry could not be reached or rejected a request."""


class PaymentVerificationError(ProviderNodeError):
    """A payment proof could not be verified."""


class UnsupportedChainError(PaymentVerificationError):
    def __init__(self, chain: str, supported: Optional[list] = None):
        self.chain = chain
        self.supported = list(supported or [])
        super().__init__(f"Unsupported chain: {chain}")


class CallError(ProviderNodeError):
    """An inbound call ended in a non-success terminal state."""
    status_code = 500


class BadRequestError(CallError):
    status_code = 400


class InsufficientPaymentError(CallError):
    status_code = 402

    def __init__(self, required: float, received: float):
        self.required = required
        self.received = received
        super().__init__("Insufficient payment")


# Unknown APIs share the 500 family with execution failures; see DESIGN.md.
class HandlerNotFoundError(CallError):
    def __init__(self, api: str):
        self.api = api
        super().__init__(f"API not found: {api}")


class HandlerTimeoutError(CallError):
    def __init__(self, api: str, timeout: float):
        self.api = api
        self.timeout = timeout
        super().__init__("Handler timeout")


class HandlerExecutionError(CallError):
    def __init__(self, api: str, message: str):
        self.api = api
        super().__init__(message)
