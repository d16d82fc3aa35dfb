"""Notification queue, Telegram channel and lifecycle fan-out."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from taxi_dispatch.domain.enums import OrderType, UserRole
from taxi_dispatch.infrastructure.models import OrderModel, UserModel
from taxi_dispatch.infrastructure.telegram import (
    TelegramChannel,
    TelegramDeliveryError,
)
from taxi_dispatch.services.notifications import LifecycleNotifier
from taxi_dispatch.workers.notifier import (
    Notification,
    NotificationDispatcher,
    Withdrawal,
)


def _channel(send=None) -> MagicMock:
    channel = MagicMock(spec=TelegramChannel)
    channel.send = send or AsyncMock(return_value={"message_id": 1})
    channel.delete = AsyncMock(return_value=True)
    channel.close = AsyncMock()
    return channel


def _order(**overrides) -> OrderModel:
    fields = dict(
        order_id="o-1",
        client_id="1001",
        type=OrderType.TAXI,
        from_address="Khreshchatyk 1",
        to_address="Boryspil <T1>",
        price=350.0,
        comment=None,
        driver_id=None,
    )
    fields.update(overrides)
    return OrderModel(**fields)


class TestDispatcher:
    @pytest.mark.asyncio
    async def test_drain_delivers_in_order(self):
        channel = _channel()
        dispatcher = NotificationDispatcher(channel)
        dispatcher.notify("1", "first")
        dispatcher.notify("2", "second", {"k": "v"})

        assert await dispatcher.drain() == 2
        calls = [c.args for c in channel.send.await_args_list]
        assert calls == [("1", "first", None), ("2", "second", {"k": "v"})]

    @pytest.mark.asyncio
    async def test_failed_delivery_does_not_stop_the_queue(self):
        send = AsyncMock(side_effect=[TelegramDeliveryError("chat not found"), None])
        dispatcher = NotificationDispatcher(_channel(send))
        dispatcher.broadcast(["1", "2"], "hello")

        assert await dispatcher.drain() == 1
        assert send.await_count == 2
        assert dispatcher.queue.empty()

    @pytest.mark.asyncio
    async def test_deliver_reports_failure(self):
        send = AsyncMock(side_effect=RuntimeError("boom"))
        dispatcher = NotificationDispatcher(_channel(send))
        assert await dispatcher.deliver(Notification("1", "x")) is False

    def test_full_queue_drops(self):
        dispatcher = NotificationDispatcher(_channel(), queue_size=1)
        assert dispatcher.notify("1", "a") is True
        assert dispatcher.notify("2", "b") is False
        assert dispatcher.broadcast(["3", "4"], "c") == 0


class TestOfferWithdrawal:
    @pytest.mark.asyncio
    async def test_offers_deleted_except_for_the_assigned_driver(self):
        message_ids = iter(range(100, 200))
        send = AsyncMock(side_effect=lambda *a: {"message_id": next(message_ids)})
        channel = _channel(send)
        dispatcher = NotificationDispatcher(channel)

        dispatcher.broadcast(["2001", "2002", "2003"], "new order", order_id="o-1")
        dispatcher.notify("1001", "unrelated")
        await dispatcher.drain()
        assert dispatcher.offers == {
            "o-1": [("2001", 100), ("2002", 101), ("2003", 102)]
        }

        dispatcher.withdraw("o-1", keep_chat_id="2002")
        await dispatcher.drain()

        deleted = [c.args for c in channel.delete.await_args_list]
        assert deleted == [("2001", 100), ("2003", 102)]
        assert dispatcher.offers == {}

    @pytest.mark.asyncio
    async def test_offers_still_queued_are_withdrawn_too(self):
        channel = _channel()
        dispatcher = NotificationDispatcher(channel)
        dispatcher.broadcast(["2001", "2002"], "new order", order_id="o-1")
        dispatcher.withdraw("o-1", keep_chat_id="2001")

        await dispatcher.drain()
        channel.delete.assert_awaited_once_with("2002", 1)

    @pytest.mark.asyncio
    async def test_failed_delete_does_not_stop_the_rest(self):
        channel = _channel()
        channel.delete = AsyncMock(side_effect=[TelegramDeliveryError("gone"), True])
        dispatcher = NotificationDispatcher(channel)
        dispatcher.broadcast(["2001", "2002"], "new order", order_id="o-1")
        dispatcher.withdraw("o-1")

        await dispatcher.drain()
        assert channel.delete.await_count == 2

    @pytest.mark.asyncio
    async def test_skipped_offers_are_not_recorded(self):
        dispatcher = NotificationDispatcher(_channel(AsyncMock(return_value=None)))
        dispatcher.broadcast(["web-user"], "new order", order_id="o-1")
        await dispatcher.drain()
        assert dispatcher.offers == {}


class TestShutdown:
    @pytest.mark.asyncio
    async def test_stop_delivers_what_is_queued(self):
        channel = _channel()
        dispatcher = NotificationDispatcher(channel)
        await dispatcher.start()
        # the worker has not been scheduled yet
        dispatcher.broadcast(["1", "2", "3"], "bye")

        await dispatcher.stop()
        assert channel.send.await_count == 3
        assert dispatcher.queue.empty()
        channel.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_stop_gives_up_after_grace_period(self):
        async def stuck(*args):
            await asyncio.sleep(10)

        channel = _channel(AsyncMock(side_effect=stuck))
        dispatcher = NotificationDispatcher(channel, shutdown_grace_seconds=0.05)
        dispatcher.broadcast(["1", "2", "3"], "bye")

        await dispatcher.stop()
        assert dispatcher.queue.qsize() == 2
        channel.close.assert_awaited_once()


class TestTelegramChannel:
    @pytest.mark.asyncio
    async def test_disabled_without_token(self):
        client = AsyncMock(spec=httpx.AsyncClient)
        channel = TelegramChannel(None, client=client)
        assert await channel.send("123", "hi") is None
        client.post.assert_not_called()

    @pytest.mark.asyncio
    async def test_skips_non_numeric_recipient(self):
        client = AsyncMock(spec=httpx.AsyncClient)
        channel = TelegramChannel("TOKEN", client=client)
        assert await channel.send("web-user", "hi") is None
        client.post.assert_not_called()

    @pytest.mark.asyncio
    async def test_sends_html_message(self):
        response = MagicMock()
        response.json.return_value = {"ok": True, "result": {"message_id": 7}}
        client = AsyncMock(spec=httpx.AsyncClient)
        client.post = AsyncMock(return_value=response)
        channel = TelegramChannel("TOKEN", "https://api.example/", client=client)

        keyboard = {"inline_keyboard": [[{"text": "Open", "url": "https://app.example"}]]}
        result = await channel.send("123", "<b>hi</b>", keyboard)
        assert result == {"message_id": 7}
        url = client.post.await_args.args[0]
        body = client.post.await_args.kwargs["json"]
        assert url == "https://api.example/botTOKEN/sendMessage"
        assert body["parse_mode"] == "HTML"
        assert body["chat_id"] == "123"
        assert body["reply_markup"] == keyboard

        await channel.send("123", "plain")
        assert "reply_markup" not in client.post.await_args.kwargs["json"]

    @pytest.mark.asyncio
    async def test_api_error_raises(self):
        response = MagicMock(status_code=400)
        response.json.return_value = {"ok": False, "description": "chat not found"}
        client = AsyncMock(spec=httpx.AsyncClient)
        client.post = AsyncMock(return_value=response)
        channel = TelegramChannel("TOKEN", client=client)

        with pytest.raises(TelegramDeliveryError, match="chat not found"):
            await channel.send("123", "hi")

    @pytest.mark.asyncio
    async def test_transport_error_raises(self):
        client = AsyncMock(spec=httpx.AsyncClient)
        client.post = AsyncMock(side_effect=httpx.ConnectError("down"))
        channel = TelegramChannel("TOKEN", client=client)

        with pytest.raises(TelegramDeliveryError):
            await channel.send("123", "hi")

    @pytest.mark.asyncio
    async def test_delete_message(self):
        response = MagicMock()
        response.json.return_value = {"ok": True, "result": True}
        client = AsyncMock(spec=httpx.AsyncClient)
        client.post = AsyncMock(return_value=response)
        channel = TelegramChannel("TOKEN", client=client)

        assert await channel.delete("123", 42) is True
        assert client.post.await_args.args[0].endswith("/botTOKEN/deleteMessage")
        assert client.post.await_args.kwargs["json"] == {
            "chat_id": "123",
            "message_id": 42,
        }
        assert await TelegramChannel(None).delete("123", 42) is False


class TestLifecycleNotifier:
    def setup_method(self):
        self.dispatcher = NotificationDispatcher(_channel(), queue_size=100)
        self.notifier = LifecycleNotifier(self.dispatcher, "https://app.example")

    def _queued(self) -> list[Notification]:
        items = []
        while not self.dispatcher.queue.empty():
            items.append(self.dispatcher.queue.get_nowait())
        return items

    def test_new_order_reaches_unblocked_drivers_only(self):
        drivers = [
            UserModel(id="2001", role=UserRole.DRIVER, is_blocked=False),
            UserModel(id="2002", role=UserRole.DRIVER, is_blocked=True),
            UserModel(id="1001", role=UserRole.DRIVER, is_blocked=False),
        ]
        assert self.notifier.order_created(_order(), drivers) == 1

        (message,) = self._queued()
        assert message.recipient_id == "2001"
        assert "Boryspil &lt;T1&gt;" in message.text
        assert "350 UAH" in message.text
        button = message.payload["inline_keyboard"][0][0]
        assert button["web_app"]["url"] == "https://app.example/driver"

    def test_accepted_names_the_driver(self):
        driver = UserModel(id="2001", name="Oleh")
        self.notifier.order_accepted(_order(driver_id="2001"), driver)
        (message,) = self._queued()
        assert message.recipient_id == "1001"
        assert "Oleh is on the way" in message.text

    def test_completed_asks_for_rating(self):
        self.notifier.order_completed(_order())
        (message,) = self._queued()
        assert "rate" in message.text
        assert message.payload["inline_keyboard"][0][0]["web_app"]["url"].endswith(
            "/orders/o-1/rate"
        )

    def test_new_order_offers_are_tagged(self):
        drivers = [UserModel(id="2001", is_blocked=False)]
        self.notifier.order_created(_order(), drivers)
        (message,) = self._queued()
        assert message.order_id == "o-1"

    def test_withdraw_keeps_the_assigned_driver(self):
        self.notifier.withdraw_offers(_order(driver_id="2001"))
        assert self._queued() == [Withdrawal("o-1", "2001")]

    def test_cancel_without_driver_is_silent(self):
        self.notifier.order_cancelled(_order(), None)
        assert self._queued() == []

    def test_chat_goes_to_the_other_party(self):
        order = _order(driver_id="2001")
        self.notifier.chat_message(order, "1001", "where are you?")
        self.notifier.chat_message(order, "2001", "2 min")
        recipients = [m.recipient_id for m in self._queued()]
        assert recipients == ["2001", "1001"]

    def test_announcement(self):
        assert self.notifier.announcement(["1", "2"], "Fares <up>") == 2
        texts = {m.text for m in self._queued()}
        assert texts == {"📢 <b>Announcement:</b>\n\nFares &lt;up&gt;"}
