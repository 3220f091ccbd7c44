# provider_node/api/models/health.py
from pydantic import BaseModel
from typing import List


class HealthStats(BaseModel):
    uptime: float
    requestsServed: int
    totalEarnings: float


class HealthResponse(BaseModel):
    """
    Response model for the health check endpoint.
    """
    status: str = "ok"
    apis: List[str]
    wallet: str
    chains: List[str]
    stats: HealthStats
