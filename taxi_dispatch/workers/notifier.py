"""
Background Notification Worker
==============================

Lifecycle events are pushed to Telegram on a best-effort basis.

Guarantees
----------
* ``notify`` / ``broadcast`` never raise and never block the request:
  they only enqueue.  A full queue drops the message with a warning.
* The worker drains the queue one message at a time; a failed delivery is
  logged and the worker moves on (no synchronous retry).
* A broadcast is one queue entry per recipient, so one bad chat id never
  affects the others.
* New-order offers are remembered by message id.  Once an order is taken
  a ``Withdrawal`` entry joins the queue behind those offers and deletes
  them from the other drivers' chats.
* ``stop`` gives queued messages a short grace period before shutdown.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Optional

from taxi_dispatch.config import settings
from taxi_dispatch.infrastructure.telegram import TelegramChannel, build_channel

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Notification:
    recipient_id: str
    text: str
    payload: Optional[dict[str, Any]] = None
    # set on new-order offers so they can be withdrawn later
    order_id: Optional[str] = None


@dataclass(frozen=True)
class Withdrawal:
    order_id: str
    keep_chat_id: Optional[str] = None


class NotificationDispatcher:
    def __init__(
        self,
        channel: TelegramChannel,
        queue_size: int = 1000,
        shutdown_grace_seconds: float = 5.0,
    ):
        self.channel = channel
        self.queue: asyncio.Queue[Notification | Withdrawal] = asyncio.Queue(
            maxsize=queue_size
        )
        self.shutdown_grace = shutdown_grace_seconds
        # order_id -> [(chat_id, message_id)] of delivered offers
        self.offers: dict[str, list[tuple[str, int]]] = {}
        self._task: asyncio.Task | None = None

    # ── Producer side (called from request handlers) ─────────────────

    def _enqueue(self, item: Notification | Withdrawal) -> bool:
        try:
            self.queue.put_nowait(item)
        except asyncio.QueueFull:
            logger.warning("Notification queue full, dropping %r", item)
            return False
        return True

    def notify(
        self,
        recipient_id: str,
        text: str,
        payload: Optional[dict[str, Any]] = None,
        order_id: Optional[str] = None,
    ) -> bool:
        """Enqueue one message.  Returns False if it had to be dropped."""
        return self._enqueue(
            Notification(str(recipient_id), text, payload, order_id)
        )

    def broadcast(
        self,
        recipient_ids: Iterable[str],
        text: str,
        payload: Optional[dict[str, Any]] = None,
        order_id: Optional[str] = None,
    ) -> int:
        return sum(
            1
            for recipient in recipient_ids
            if self.notify(recipient, text, payload, order_id)
        )

    def withdraw(self, order_id: str, keep_chat_id: Optional[str] = None) -> bool:
        """Queue deletion of the order's offers, except in *keep_chat_id*."""
        return self._enqueue(Withdrawal(order_id, keep_chat_id))

    # ── Consumer side ────────────────────────────────────────────────

    async def deliver(self, item: Notification | Withdrawal) -> bool:
        if isinstance(item, Withdrawal):
            await self._withdraw(item)
            return True
        try:
            result = await self.channel.send(
                item.recipient_id, item.text, item.payload
            )
        except Exception:
            logger.warning("Failed to notify %s", item.recipient_id, exc_info=True)
            return False
        if item.order_id and result and "message_id" in result:
            self.offers.setdefault(item.order_id, []).append(
                (item.recipient_id, result["message_id"])
            )
        return True

    async def _withdraw(self, withdrawal: Withdrawal) -> None:
        for chat_id, message_id in self.offers.pop(withdrawal.order_id, []):
            if chat_id == withdrawal.keep_chat_id:
                continue
            try:
                await self.channel.delete(chat_id, message_id)
            except Exception:
                logger.warning(
                    "Failed to withdraw offer %s from %s",
                    withdrawal.order_id, chat_id, exc_info=True,
                )

    async def drain(self) -> int:
        """Deliver everything currently queued.  Returns the count sent."""
        delivered = 0
        while not self.queue.empty():
            item = self.queue.get_nowait()
            try:
                if await self.deliver(item):
                    delivered += 1
            finally:
                self.queue.task_done()
        return delivered

    async def _loop(self) -> None:
        while True:
            item = await self.queue.get()
            try:
                await self.deliver(item)
            finally:
                self.queue.task_done()

    async def start(self) -> None:
        self._task = asyncio.create_task(self._loop())
        logger.info(
            "Notification worker started (telegram=%s)",
            "on" if self.channel.enabled else "off",
        )

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        try:
            await asyncio.wait_for(self.drain(), timeout=self.shutdown_grace)
        except asyncio.TimeoutError:
            logger.warning(
                "Shutdown grace expired, dropping %d queued notifications",
                self.queue.qsize(),
            )
        await self.channel.close()
        logger.info("Notification worker stopped")


dispatcher = NotificationDispatcher(
    build_channel(),
    queue_size=settings.notification_queue_size,
    shutdown_grace_seconds=settings.notification_shutdown_grace_seconds,
)


async def start_notification_worker() -> None:
    await dispatcher.start()


async def stop_notification_worker() -> None:
    await dispatcher.stop()
