# provider_node/x402/verifier.py
"""
On-chain payment verification.

A caller proves payment by sending the signature of an SPL token transfer in
the X-Payment header. The verifier fetches that transaction from the chain and
checks, in order:

1. the transaction exists and did not fail on-chain
2. it contains a token-program transfer of the payment token
3. the destination token account exists and has a resolvable owner
4. that owner is the node's wallet
5. the transferred amount is a non-negative whole number of raw units

A failed check never raises: it produces a PaymentResult with valid=False, a
PaymentFailure code and a human-readable message.
"""
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, Mapping, Optional

from provider_node.core.config import Settings, settings as default_settings
from provider_node.services.solana_rpc import SolanaRPCClient

logger = logging.getLogger(__name__)

# Sentinel proof for zero-cost calls (browser clients send it for free APIs)
FREE_CALL_TOKEN = "free-api-call"
UNKNOWN_SENDER = "unknown"

# SPL Token program
TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
TRANSFER_INSTRUCTION_TYPES = ("transfer", "transferChecked")


class Chain(str, Enum):
    """Ledgers a node can be paid on."""
    SOLANA = "solana"
    BASE = "base"


class PaymentFailure(Enum):
    """Why a payment proof was rejected."""
    UNSUPPORTED_CHAIN = "unsupported_chain"
    CONNECTION_UNAVAILABLE = "connection_unavailable"
    INVALID_SIGNATURE = "invalid_signature"
    TRANSACTION_NOT_FOUND = "transaction_not_found"
    TRANSACTION_FAILED = "transaction_failed"
    NO_TRANSFER_INSTRUCTION = "no_transfer_instruction"
    DESTINATION_NOT_FOUND = "destination_not_found"
    OWNER_UNRESOLVED = "owner_unresolved"
    WRONG_RECIPIENT = "wrong_recipient"
    INVALID_AMOUNT = "invalid_amount"
    QUERY_FAILED = "query_failed"


@dataclass(frozen=True)
class PaymentResult:
    valid: bool
    amount_paid: Optional[float] = None
    sender_address: Optional[str] = None
    error: Optional[str] = None
    failure: Optional[PaymentFailure] = None

    @classmethod
    def rejected(cls, failure: PaymentFailure, error: str) -> "PaymentResult":
        return cls(valid=False, error=error, failure=failure)


@dataclass(frozen=True)
class PaymentClaim:
    """The verified payment attached to one inbound call. Never mutated."""
    amount_paid: float
    sender_address: str
    proof_token: str
    chain: str


def is_free_call_token(proof_token: Optional[str]) -> bool:
    return not proof_token or proof_token == FREE_CALL_TOKEN


def parse_chain(value: str) -> Optional[Chain]:
    try:
        return Chain(value.strip().lower())
    except (ValueError, AttributeError):
        return None


def raw_units_to_amount(raw_amount: Any, decimals: int) -> Optional[float]:
    """
    Convert raw token units to a token amount.

    Raw units are whole numbers. Returns None when the raw value is missing,
    negative, fractional or not a finite integer ("inf", "1e999", "1.5").
    """
    if raw_amount is None or isinstance(raw_amount, bool):
        return None
    if isinstance(raw_amount, float):
        if not raw_amount.is_integer():
            return None
        units = int(raw_amount)
    else:
        try:
            units = int(raw_amount)
        except (TypeError, ValueError):
            return None
    if units < 0:
        return None
    try:
        return units / (10 ** decimals)
    except OverflowError:
        return None


def find_transfer_instruction(transaction: Mapping[str, Any], mint: Optional[str] = None) -> Optional[Dict[str, Any]]:
    """
    Return the `parsed` block of the first SPL token transfer in a transaction.

    transferChecked instructions name their mint; those moving a token other
    than `mint` are skipped. Plain transfer instructions carry no mint.
    """
    message = (transaction.get("transaction") or {}).get("message") or {}
    for ix in message.get("instructions") or []:
        if not isinstance(ix, dict) or "parsed" not in ix:
            continue
        if ix.get("programId") != TOKEN_PROGRAM_ID:
            continue
        parsed = ix["parsed"]
        if not isinstance(parsed, dict) or parsed.get("type") not in TRANSFER_INSTRUCTION_TYPES:
            continue
        info = parsed.get("info") or {}
        if mint and info.get("mint") and info["mint"] != mint:
            continue
        return parsed
    return None


def build_connections(chains: Iterable[str], config: Settings) -> Dict[str, SolanaRPCClient]:
    """Open one chain-query client per supported chain that has an RPC backend."""
    connections: Dict[str, SolanaRPCClient] = {}
    for chain in chains:
        if parse_chain(chain) is Chain.SOLANA:
            connections[Chain.SOLANA.value] = SolanaRPCClient(
                str(config.SOLANA_RPC_URL),
                timeout=config.CHAIN_QUERY_TIMEOUT_SECONDS
            )
            logger.info(f"Connected to Solana RPC: {config.SOLANA_RPC_URL}")
    return connections


class PaymentVerifier:
    """
    Verifies payment proofs against the configured chains.

    Stateless per call; the chain clients are shared read-only.
    """

    def __init__(
        self,
        chains: Iterable[str],
        connections: Optional[Mapping[str, Any]] = None,
        config: Optional[Settings] = None,
    ):
        config = config or default_settings
        self.chains = [str(c).lower() for c in chains]
        self.token_decimals = config.PAYMENT_TOKEN_DECIMALS
        self.payment_mint = config.USDC_MINT
        if connections is None:
            connections = build_connections(self.chains, config)
        self._connections = dict(connections)

    def supports(self, chain: str) -> bool:
        return str(chain).lower() in self.chains

    async def verify(self, proof_token: Optional[str], chain: str, expected_recipient: str) -> PaymentResult:
        """
        Check a proof token for `chain` paid to `expected_recipient`.

        The free-call sentinel (or an empty token) is accepted without any
        network query and yields a zero-amount payment.
        """
        if is_free_call_token(proof_token):
            logger.info("Received free API call proof. Allowing access.")
            return PaymentResult(valid=True, amount_paid=0.0, sender_address=UNKNOWN_SENDER)

        if not self.supports(chain):
            return PaymentResult.rejected(
                PaymentFailure.UNSUPPORTED_CHAIN,
                f"Unsupported chain for payment verification: {chain}"
            )

        connection = self._connections.get(str(chain).lower())
        if connection is None:
            return PaymentResult.rejected(
                PaymentFailure.CONNECTION_UNAVAILABLE,
                f"{chain} connection not established."
            )

        # The RPC client is blocking; keep it off the event loop
        return await asyncio.to_thread(self._verify_transfer, connection, proof_token, expected_recipient)

    def _verify_transfer(self, connection, signature: str, expected_recipient: str) -> PaymentResult:
        if not isinstance(signature, str):
            return PaymentResult.rejected(
                PaymentFailure.INVALID_SIGNATURE,
                "Invalid transaction signature: empty or not a string."
            )

        try:
            logger.info(f"Verifying transaction: {signature}")
            tx = connection.get_parsed_transaction(signature)

            if not tx:
                logger.error(f"Verification failed: transaction not found on-chain: {signature}")
                return PaymentResult.rejected(PaymentFailure.TRANSACTION_NOT_FOUND, "Transaction not found.")

            meta = tx.get("meta") or {}
            if meta.get("err"):
                logger.error(f"Verification failed: transaction {signature} has an on-chain error: {meta['err']}")
                return PaymentResult.rejected(PaymentFailure.TRANSACTION_FAILED, "Transaction failed on-chain.")

            transfer = find_transfer_instruction(tx, mint=self.payment_mint)
            if transfer is None:
                logger.error(f"Verification failed: no SPL token transfer instruction in {signature}")
                return PaymentResult.rejected(
                    PaymentFailure.NO_TRANSFER_INSTRUCTION,
                    "No valid SPL Token transfer instruction found."
                )

            info = transfer.get("info") or {}
            destination = info.get("destination")
            account = connection.get_parsed_account_info(destination) if destination else None
            if not account or not account.get("data"):
                logger.error(f"Verification failed: destination token account {destination} does not exist")
                return PaymentResult.rejected(
                    PaymentFailure.DESTINATION_NOT_FOUND,
                    "Destination token account not found."
                )

            data = account["data"]
            owner = None
            if isinstance(data, dict):
                owner = ((data.get("parsed") or {}).get("info") or {}).get("owner")
            if not owner:
                logger.error(f"Verification failed: could not determine the owner of {destination}")
                return PaymentResult.rejected(
                    PaymentFailure.OWNER_UNRESOLVED,
                    "Could not determine the owner of the destination token account."
                )

            if owner != expected_recipient:
                logger.error(
                    f"Verification failed: payment sent to the wrong wallet "
                    f"(expected owner {expected_recipient}, actual owner {owner})"
                )
                return PaymentResult.rejected(
                    PaymentFailure.WRONG_RECIPIENT,
                    "Payment was sent to an incorrect account."
                )

            raw_amount = info.get("amount")
            if raw_amount is None:
                raw_amount = (info.get("tokenAmount") or {}).get("amount")
            amount_paid = raw_units_to_amount(raw_amount, self.token_decimals)
            if amount_paid is None:
                logger.error(f"Verification failed: invalid payment amount {raw_amount!r}")
                return PaymentResult.rejected(PaymentFailure.INVALID_AMOUNT, "Invalid payment amount.")

            sender = info.get("authority") or info.get("multisigAuthority") or UNKNOWN_SENDER
            logger.info(f"Payment verified: {amount_paid:.6f} USDC from sender {sender}")
            return PaymentResult(valid=True, amount_paid=amount_paid, sender_address=sender)

        except Exception as e:
            logger.error(f"Unexpected error during on-chain verification of {signature}: {e}")
            return PaymentResult.rejected(
                PaymentFailure.QUERY_FAILED,
                f"On-chain verification failed: {e}"
            )
