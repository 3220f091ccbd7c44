# provider_node/api/endpoints/health.py
from fastapi import APIRouter, Depends
import logging

from provider_node.api.deps import get_dispatcher, get_node_info
from provider_node.api.models.health import HealthResponse, HealthStats
from provider_node.gateway.dispatcher import MeteredDispatcher

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/health", response_model=HealthResponse, summary="Health Check")
async def health(
    dispatcher: MeteredDispatcher = Depends(get_dispatcher),
    node: dict = Depends(get_node_info),
) -> HealthResponse:
    """
    Report liveness, the APIs on offer and headline stats.

    Served without a payment.
    """
    stats = dispatcher.stats.snapshot()
    return HealthResponse(
        status="ok",
        apis=dispatcher.handlers.names(),
        wallet=node["wallet"],
        chains=node["chains"],
        stats=HealthStats(
            uptime=stats.uptime,
            requestsServed=stats.requests_served,
            totalEarnings=stats.total_earnings,
        ),
    )
