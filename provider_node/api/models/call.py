# provider_node/api/models/call.py
from pydantic import BaseModel, Field
from typing import Any, Optional


class CallResponse(BaseModel):
    """
    Response model for a successful call.
    """
    data: Any = Field(None, description="The handler's result.")
    requestId: str
    latency: int = Field(..., description="Elapsed time in milliseconds.")
    cost: float = Field(..., description="Price charged for the call in USDC.")
    timestamp: str = Field(..., description="Completion time (ISO 8601, UTC).")


class CallErrorResponse(BaseModel):
    error: str
    requestId: str
    latency: Optional[int] = None


class InsufficientPaymentResponse(BaseModel):
    error: str = "Insufficient payment"
    required: float
    received: float
    requestId: str
