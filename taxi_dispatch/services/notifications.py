"""
Lifecycle notifications: who hears about which order event, and what they
read.  Everything is handed to the ``NotificationDispatcher`` queue, so none
of these calls can fail a request.
"""

from __future__ import annotations

from html import escape
from typing import Iterable, Optional

from taxi_dispatch.infrastructure.models import OrderModel, UserModel
from taxi_dispatch.infrastructure.telegram import open_app_button
from taxi_dispatch.workers.notifier import NotificationDispatcher

ORDER_TYPE_LABELS = {
    "taxi": "🚕 Taxi",
    "cargo": "🚚 Cargo",
    "courier": "📦 Courier",
    "towing": "🛻 Towing",
}


def _type_label(order: OrderModel) -> str:
    value = getattr(order.type, "value", order.type)
    return ORDER_TYPE_LABELS.get(value, value)


def _price(value: Optional[float]) -> str:
    return f"{value:g} UAH" if value else "negotiable"


class LifecycleNotifier:
    def __init__(self, dispatcher: NotificationDispatcher, webapp_url: str):
        self.dispatcher = dispatcher
        self.webapp_url = webapp_url

    def _button(self, path: str = "") -> dict:
        return open_app_button(self.webapp_url, path)

    # ── Orders ────────────────────────────────────────────────────────

    def order_created(self, order: OrderModel, drivers: Iterable[UserModel]) -> int:
        text = (
            f"🆕 <b>New order</b> ({_type_label(order)})\n\n"
            f"📍 {escape(order.from_address)}\n"
            f"🏁 {escape(order.to_address)}\n"
            f"💰 {_price(order.price)}"
        )
        if order.comment:
            text += f"\n💬 {escape(order.comment)}"
        recipients = [
            d.id for d in drivers if not d.is_blocked and d.id != order.client_id
        ]
        return self.dispatcher.broadcast(
            recipients, text, self._button("/driver"), order_id=order.order_id
        )

    def withdraw_offers(self, order: OrderModel) -> None:
        """Delete the new-order offer from every chat but the assigned driver's."""
        self.dispatcher.withdraw(order.order_id, keep_chat_id=order.driver_id)

    def order_accepted(self, order: OrderModel, driver: Optional[UserModel]) -> None:
        name = escape(driver.name) if driver and driver.name else "Your driver"
        self.dispatcher.notify(
            order.client_id,
            f"✅ <b>Driver accepted your order!</b>\n\n{name} is on the way.",
        )

    def bid_proposed(self, order: OrderModel) -> None:
        self.dispatcher.notify(
            order.client_id,
            f"💬 A driver offers {_price(order.driver_bid_price)} for your order.",
            self._button(f"/orders/{order.order_id}"),
        )

    def bid_rejected(self, order: OrderModel, driver_id: str) -> None:
        self.dispatcher.notify(
            driver_id, "❌ The client declined your price for the order."
        )

    def driver_arrived(self, order: OrderModel) -> None:
        self.dispatcher.notify(
            order.client_id, "🚖 <b>Your driver has arrived!</b>"
        )

    def order_completed(self, order: OrderModel) -> None:
        self.dispatcher.notify(
            order.client_id,
            "🏁 <b>Trip completed!</b>\n\nPlease rate your driver.",
            self._button(f"/orders/{order.order_id}/rate"),
        )

    def order_cancelled(self, order: OrderModel, driver_id: Optional[str]) -> None:
        if driver_id:
            self.dispatcher.notify(driver_id, "🚫 The order was cancelled.")

    # ── Chat / users ──────────────────────────────────────────────────

    def chat_message(self, order: OrderModel, sender_id: str, message: str) -> None:
        recipient = order.driver_id if sender_id == order.client_id else order.client_id
        if recipient:
            self.dispatcher.notify(
                recipient,
                f"✉️ <b>New message</b>\n\n{escape(message)}",
                self._button(f"/chat/{order.order_id}"),
            )

    def driver_registered(self, user: UserModel, admin_ids: Iterable[str]) -> int:
        name = escape(user.name) if user.name else "Unnamed"
        return self.dispatcher.broadcast(
            admin_ids, f"🔔 New driver registered!\n{name} (ID: {user.id})"
        )

    def announcement(self, recipient_ids: Iterable[str], message: str) -> int:
        return self.dispatcher.broadcast(
            recipient_ids, f"📢 <b>Announcement:</b>\n\n{escape(message)}"
        )
