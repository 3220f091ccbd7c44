# provider_node/services/solana_rpc.py
"""
Read-only Solana JSON-RPC client used for payment verification.

Only the two queries the verifier needs are implemented. Both return the
`jsonParsed` encoding so that SPL token instructions and token accounts come
back already decoded.
"""
import itertools
import logging
from typing import Any, Dict, Optional

import requests

logger = logging.getLogger(__name__)

DEFAULT_COMMITMENT = "confirmed"


class SolanaRPCError(Exception):
    """The RPC node answered with a JSON-RPC error or a malformed body."""


class SolanaRPCClient:
    """
    Minimal JSON-RPC client for a Solana RPC endpoint.

    Instances hold no per-call state and can be shared by concurrent calls.
    Every query is a single attempt with no retries.
    """

    def __init__(self, rpc_url: str, timeout: float = 10.0, commitment: str = DEFAULT_COMMITMENT):
        self.rpc_url = str(rpc_url)
        self.timeout = timeout
        self.commitment = commitment
        self._ids = itertools.count(1)

    def _call(self, method: str, params: list) -> Any:
        """
        POST one JSON-RPC request and return its `result` field.

        Raises:
            requests.RequestException: If the HTTP request fails
            SolanaRPCError: If the RPC reports an error or omits `result`
        """
        response = requests.post(
            self.rpc_url,
            json={
                "jsonrpc": "2.0",
                "id": next(self._ids),
                "method": method,
                "params": params,
            },
            timeout=self.timeout
        )
        response.raise_for_status()

        body = response.json()
        if "error" in body:
            raise SolanaRPCError(f"RPC error: {body['error']}")

        if "result" not in body:
            raise SolanaRPCError("Invalid RPC response: missing 'result' field")

        return body["result"]

    def get_parsed_transaction(self, signature: str) -> Optional[Dict[str, Any]]:
        """Fetch a transaction by signature, or None if the node does not know it."""
        logger.debug(f"getTransaction {signature}")
        return self._call(
            "getTransaction",
            [
                signature,
                {
                    "encoding": "jsonParsed",
                    "commitment": self.commitment,
                    "maxSupportedTransactionVersion": 0,
                },
            ],
        )

    def get_parsed_account_info(self, address: str) -> Optional[Dict[str, Any]]:
        """Fetch an account's parsed info, or None if the account does not exist."""
        logger.debug(f"getAccountInfo {address}")
        result = self._call(
            "getAccountInfo",
            [address, {"encoding": "jsonParsed", "commitment": self.commitment}],
        )
        if not isinstance(result, dict):
            return None
        return result.get("value")
