"""
Order chat
==========

GET  /api/v1/chat/{order_id}  -- messages of one order, oldest first
POST /api/v1/chat             -- post a message (order's client or driver only)
"""

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from taxi_dispatch.api.dependencies import get_db, get_notifier
from taxi_dispatch.api.middleware import limiter
from taxi_dispatch.api.schemas import ChatMessageRequest, ChatMessageResponse
from taxi_dispatch.config import settings
from taxi_dispatch.infrastructure.repositories import ChatRepository, OrderRepository
from taxi_dispatch.services.notifications import LifecycleNotifier

router = APIRouter(prefix="/chat", tags=["chat"])


@router.get(
    "/{order_id}",
    response_model=list[ChatMessageResponse],
    summary="Chat history of an order",
)
@limiter.limit(settings.api_rate_limit)
async def list_messages(
    request: Request,
    order_id: str,
    db: AsyncSession = Depends(get_db),
):
    return await ChatRepository(db).list_for_order(order_id)


@router.post(
    "",
    status_code=201,
    response_model=ChatMessageResponse,
    summary="Send a chat message",
)
@limiter.limit(settings.api_rate_limit)
async def send_message(
    request: Request,
    body: ChatMessageRequest,
    db: AsyncSession = Depends(get_db),
    notifier: LifecycleNotifier = Depends(get_notifier),
):
    order = await OrderRepository(db).get_by_id(body.order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    if body.sender_id not in (order.client_id, order.driver_id):
        raise HTTPException(
            status_code=403, detail="Only the order's client or driver can chat"
        )

    message = await ChatRepository(db).add(
        order_id=body.order_id, sender_id=body.sender_id, message=body.message
    )
    notifier.chat_message(order, body.sender_id, body.message)
    return message
