# provider_node/x402/__init__.py
"""
x402 Payment Protocol Integration Module.

This module gates the provider node's APIs behind per-call payments that are
verified directly on-chain.

Key components:
- verifier: on-chain verification of SPL token transfer proofs
- middleware: FastAPI middleware attaching a verified payment to each call

Configuration is loaded from environment variables via provider_node.core.config.
"""

__version__ = "0.1.0"
