# provider_node/api/deps.py
"""Accessors for the per-app collaborators stored on app.state."""
from fastapi import Request

from provider_node.gateway.dispatcher import MeteredDispatcher


def get_dispatcher(request: Request) -> MeteredDispatcher:
    return request.app.state.dispatcher


def get_node_info(request: Request) -> dict:
    return {
        "wallet": request.app.state.wallet_address,
        "chains": list(request.app.state.chains),
    }
