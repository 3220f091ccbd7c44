# provider_node/api/endpoints/call.py
from fastapi import APIRouter, Depends, Request, status
from starlette.responses import JSONResponse
import logging

from provider_node.api.deps import get_dispatcher
from provider_node.api.models.call import (
    CallErrorResponse,
    CallResponse,
    InsufficientPaymentResponse,
)
from provider_node.core.errors import (
    BadRequestError,
    CallError,
    InsufficientPaymentError,
)
from provider_node.gateway.context import CallContext
from provider_node.gateway.dispatcher import MeteredDispatcher
from provider_node.x402.middleware import get_payment, get_request_id

router = APIRouter()
logger = logging.getLogger(__name__)


def call_error_response(error: CallError, context: CallContext) -> JSONResponse:
    """Map a dispatcher error to its JSON response."""
    if isinstance(error, InsufficientPaymentError):
        body = InsufficientPaymentResponse(
            required=error.required,
            received=error.received,
            requestId=context.request_id,
        )
        return JSONResponse(status_code=error.status_code, content=body.model_dump())

    if isinstance(error, BadRequestError):
        body = CallErrorResponse(error=str(error), requestId=context.request_id)
        return JSONResponse(status_code=error.status_code, content=body.model_dump(exclude_none=True))

    body = CallErrorResponse(
        error=str(error),
        requestId=context.request_id,
        latency=context.elapsed_ms(),
    )
    return JSONResponse(status_code=error.status_code, content=body.model_dump())


@router.post(
    "/call",
    response_model=CallResponse,
    summary="Invoke a Paid API",
    responses={
        400: {"model": CallErrorResponse, "description": "Malformed call or unsupported chain"},
        402: {"model": InsufficientPaymentResponse, "description": "Invalid or insufficient payment"},
        500: {"model": CallErrorResponse, "description": "Unknown API, handler timeout or handler failure"},
    },
)
async def call_api(
    request: Request,
    dispatcher: MeteredDispatcher = Depends(get_dispatcher),
):
    """
    Invoke a registered API with `{"api": ..., "params": {...}}`.

    The payment middleware has already verified the X-Payment proof; the
    claimed amount must cover the API's price.
    """
    request_id = get_request_id(request)
    payment = get_payment(request)
    if payment is None:
        return JSONResponse(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            content={"error": "Payment required", "requestId": request_id},
        )

    context = CallContext(request_id=request_id, payment=payment)

    try:
        body = await request.json()
    except ValueError:
        body = None

    try:
        result = await dispatcher.dispatch(context, body)
    except CallError as e:
        if e.status_code >= 500:
            logger.error(f"Error handling request {request_id}: {e}")
        return call_error_response(e, context)

    return CallResponse(
        data=result.data,
        requestId=result.request_id,
        latency=result.latency,
        cost=result.cost,
        timestamp=result.timestamp,
    )
