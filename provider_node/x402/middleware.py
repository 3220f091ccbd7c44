# provider_node/x402/middleware.py
"""
FastAPI middleware for x402 payment verification.

This middleware:
1. Assigns every request a request id (request.state.request_id)
2. Lets the health check through without any payment
3. Reads the X-Payment proof and X-Payment-Chain headers
4. Verifies the proof on-chain through the PaymentVerifier
5. Attaches the resulting PaymentClaim to request.state.payment

Rejected payments never reach the endpoint: the middleware answers 400 for an
unsupported chain and 402 for a proof that does not verify.
"""
import logging
from typing import Callable, Iterable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from provider_node.core.errors import PaymentVerificationError, UnsupportedChainError
from provider_node.gateway.context import generate_request_id
from provider_node.x402.verifier import (
    FREE_CALL_TOKEN,
    UNKNOWN_SENDER,
    PaymentClaim,
    PaymentVerifier,
    is_free_call_token,
)

logger = logging.getLogger(__name__)

X_PAYMENT_HEADER = "X-Payment"
X_PAYMENT_CHAIN_HEADER = "X-Payment-Chain"

# Paths served without a payment gate
UNPROTECTED_PATHS = ("/health",)


def is_unprotected_path(path: str, unprotected: Iterable[str] = UNPROTECTED_PATHS) -> bool:
    normalized = path.rstrip("/") or "/"
    return normalized in unprotected


def get_request_id(request: Request) -> str:
    """Return the request id assigned by the middleware, assigning one if missing."""
    request_id = getattr(request.state, "request_id", None)
    if request_id is None:
        request_id = generate_request_id()
        request.state.request_id = request_id
    return request_id


def get_payment(request: Request) -> Optional[PaymentClaim]:
    return getattr(request.state, "payment", None)


class PaymentMiddleware(BaseHTTPMiddleware):
    """
    x402 payment gate.

    `recipient` is the wallet address payments must be sent to. When the
    request names no chain, `primary_chain` is assumed.
    """

    def __init__(self, app, verifier: PaymentVerifier, recipient: str, primary_chain: Optional[str] = None):
        super().__init__(app)
        self.verifier = verifier
        self.recipient = recipient
        self.primary_chain = primary_chain or (verifier.chains[0] if verifier.chains else "solana")

    async def authorize(self, request: Request) -> PaymentClaim:
        """
        Turn the request's payment headers into a PaymentClaim.

        Raises:
            UnsupportedChainError: If a paid proof names a chain this node does not accept
            PaymentVerificationError: If the proof does not verify on-chain
        """
        proof_token = request.headers.get(X_PAYMENT_HEADER, "")
        chain = (request.headers.get(X_PAYMENT_CHAIN_HEADER) or self.primary_chain).strip().lower()

        if not is_free_call_token(proof_token) and not self.verifier.supports(chain):
            raise UnsupportedChainError(chain, self.verifier.chains)

        result = await self.verifier.verify(proof_token, chain, self.recipient)
        if not result.valid:
            raise PaymentVerificationError(result.error or "Payment could not be verified")

        return PaymentClaim(
            amount_paid=result.amount_paid or 0.0,
            sender_address=result.sender_address or UNKNOWN_SENDER,
            proof_token=proof_token or FREE_CALL_TOKEN,
            chain=chain,
        )

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Response]
    ) -> Response:
        request_id = get_request_id(request)

        if is_unprotected_path(request.url.path):
            return await call_next(request)

        try:
            payment = await self.authorize(request)
        except UnsupportedChainError as e:
            logger.warning(f"[{request_id}] {e}")
            return JSONResponse(
                status_code=400,
                content={
                    "error": "Unsupported chain",
                    "supported": e.supported,
                    "requestId": request_id,
                }
            )
        except PaymentVerificationError as e:
            logger.warning(f"[{request_id}] Invalid payment: {e}")
            return JSONResponse(
                status_code=402,
                content={
                    "error": "Invalid payment",
                    "message": str(e),
                    "requestId": request_id,
                }
            )
        except Exception as e:
            logger.error(f"[{request_id}] Payment verification failed: {e}")
            return JSONResponse(
                status_code=402,
                content={
                    "error": "Payment verification failed",
                    "message": str(e),
                    "requestId": request_id,
                }
            )

        request.state.payment = payment
        if payment.amount_paid:
            logger.info(f"[{request_id}] Payment of {payment.amount_paid} accepted from {payment.sender_address}")

        return await call_next(request)
