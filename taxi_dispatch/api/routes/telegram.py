"""
Telegram bot webhook
====================

POST /api/v1/telegram/webhook

* ``/start``            -- greet the user by role (first contact creates a
                          client, or an admin for configured admin ids).
* any 8-character text  -- treated as a driver access code and redeemed.

Replies go through the notification queue like every other message.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException

from taxi_dispatch.api.dependencies import get_code_issuer, get_dispatcher, get_notifier
from taxi_dispatch.api.schemas import TelegramUpdate
from taxi_dispatch.config import settings
from taxi_dispatch.domain.enums import UserRole
from taxi_dispatch.domain.results import Failure
from taxi_dispatch.infrastructure.models import UserModel
from taxi_dispatch.infrastructure.telegram import open_app_button
from taxi_dispatch.services.access_codes import AccessCodeIssuer
from taxi_dispatch.services.notifications import LifecycleNotifier
from taxi_dispatch.workers.notifier import NotificationDispatcher

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/telegram", tags=["telegram"])

GREETINGS = {
    UserRole.ADMIN: "Welcome, admin {name}! 👑\n\nOpen the app to manage the service.",
    UserRole.DRIVER: "Hi, {name}! 🚖\n\nYou are on the line. Open the app to take orders.",
    UserRole.CLIENT: (
        "Welcome, {name}! 🎉\n\n🚖 Order a taxi, cargo, courier or towing in the app.\n\n"
        "🔑 Drivers: send me the access code you got from the administrator."
    ),
}

CODE_ACCEPTED = (
    "✅ <b>Congratulations!</b>\n\nYour code was accepted and you are now a "
    "<b>DRIVER</b>. 🚖 Open the app to see your new menu."
)
CODE_REJECTED = "❌ Invalid or already used code."


async def _get_or_create_user(
    issuer: AccessCodeIssuer, user_id: str, first_name: Optional[str]
) -> UserModel:
    user = await issuer.users.get_by_id(user_id)
    if user is None:
        role = UserRole.ADMIN if user_id in settings.admin_ids else UserRole.CLIENT
        user = await issuer.users.create(user_id=user_id, role=role, name=first_name)
    return user


@router.post("/webhook", summary="Telegram Bot API update receiver")
async def webhook(
    update: TelegramUpdate,
    secret_token: Optional[str] = Header(
        None, alias="X-Telegram-Bot-Api-Secret-Token"
    ),
    issuer: AccessCodeIssuer = Depends(get_code_issuer),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    notifier: LifecycleNotifier = Depends(get_notifier),
):
    if settings.telegram_webhook_secret and (
        secret_token != settings.telegram_webhook_secret
    ):
        raise HTTPException(status_code=403, detail="Invalid webhook secret")

    message = update.message or {}
    sender = message.get("from") or {}
    text = (message.get("text") or "").strip()
    if not sender.get("id") or not text:
        return {"ok": True}

    user_id = str(sender["id"])
    chat_id = str((message.get("chat") or {}).get("id", user_id))
    first_name = sender.get("first_name")

    if text.startswith("/start"):
        user = await _get_or_create_user(issuer, user_id, first_name)
        greeting = GREETINGS[UserRole(user.role)].format(
            name=user.name or first_name or "friend"
        )
        dispatcher.notify(chat_id, greeting, open_app_button(settings.webapp_url))
    elif len(text) == settings.access_code_length and not text.startswith("/"):
        result = await issuer.register_driver_with_code(
            user_id, text, first_name, None
        )
        if isinstance(result, Failure):
            dispatcher.notify(chat_id, CODE_REJECTED)
        else:
            dispatcher.notify(
                chat_id, CODE_ACCEPTED, open_app_button(settings.webapp_url)
            )
            notifier.driver_registered(result, settings.admin_ids)
    return {"ok": True}
