"""
HTTP adapter for the routing pipeline.

Routing outcomes are reported in the response body, not through the status
code: validation failures, duplicates and broker failures all answer 200
with ``success: false`` and a human-readable ``message``.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, status

from commrelay.core.config import request_logger
from commrelay.core.dependencies import get_channel_router, get_status_store
from commrelay.core.exceptions.types import (
    MessageNotFoundException,
    MessageValidationException,
    RoutingException,
)
from commrelay.core.schemas.message import (
    DeliveryRecordResponse,
    MessageInput,
    SendMessageResponse,
)
from commrelay.core.services.router import ChannelRouter
from commrelay.core.services.status_store import StatusStore

router = APIRouter()

QUEUED_MESSAGE = "Message queued successfully"
DUPLICATE_MESSAGE = "Duplicate message detected"


@router.post(
    "/messages",
    response_model=SendMessageResponse,
    status_code=status.HTTP_200_OK,
    summary="Send a message",
    description="""
Validates the request, checks it for duplicates and enqueues it for delivery.

**Outcomes (`message`):**
- `Message queued successfully` - enqueued, `messageId` is set
- `Duplicate message detected` - same channel, recipient and body seen in the last 24 hours
- `Error: <reason>` - validation or enqueue failure

Delivery happens asynchronously; poll `GET /messages/{messageId}` for the outcome.
    """,
)
async def send_message(
    payload: MessageInput,
    channel_router: Annotated[ChannelRouter, Depends(get_channel_router)],
) -> SendMessageResponse:
    try:
        result = await channel_router.route(payload)
    except (MessageValidationException, RoutingException) as e:
        request_logger.warning(f"Message not routed trace_id={e.trace_id}: {e.message}")
        return SendMessageResponse(
            success=False,
            message_id=None,
            trace_id=e.trace_id or "",
            message=f"Error: {e.message}",
        )

    if result.duplicate:
        return SendMessageResponse(
            success=False,
            message_id=None,
            trace_id=result.trace_id,
            message=DUPLICATE_MESSAGE,
        )

    return SendMessageResponse(
        success=True,
        message_id=result.message_id,
        trace_id=result.trace_id,
        message=QUEUED_MESSAGE,
    )


@router.get(
    "/messages/{message_id}",
    response_model=DeliveryRecordResponse,
    summary="Get the delivery record of a message",
)
async def get_message(
    message_id: str,
    status_store: Annotated[StatusStore, Depends(get_status_store)],
) -> DeliveryRecordResponse:
    record = await status_store.get(message_id)
    if record is None:
        raise MessageNotFoundException(f"Message {message_id} not found.")
    return DeliveryRecordResponse.model_validate(record)


@router.get(
    "/traces/{trace_id}/messages",
    response_model=list[DeliveryRecordResponse],
    summary="List the delivery records of a trace",
)
async def list_trace_messages(
    trace_id: str,
    status_store: Annotated[StatusStore, Depends(get_status_store)],
) -> list[DeliveryRecordResponse]:
    records = await status_store.list_by_trace(trace_id)
    return [DeliveryRecordResponse.model_validate(record) for record in records]
