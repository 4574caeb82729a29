# coding: utf-8
"""
Order & payment lifecycle engine

State machine of an order and router for every human-driven event that can
advance it:

    pending --admin confirm--------> awaiting_product --product uploaded--> delivered
    pending --admin cancel---------> cancelled
    pending --customer cancel------> cancelled

Every public event method returns an Outcome (what to answer on the
callback query) and never raises: shop errors become user-visible notices,
anything unexpected is logged and reported generically.

Status changes go through the conditional update in
crud.transition_order_status; the affected row count is the truth. Events
touching one order are additionally serialized in-process by a per-order
lock so that a buyer is never told about a transition that then loses a race.
"""
import asyncio
import functools
import weakref
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Set

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.core.enums import AdminDecision, Currency, OrderStatus
from src.core.exceptions import (
    CooldownError,
    ExternalTransient,
    OrderNotFound,
    PersistenceError,
    ProductNotFound,
    ShopError,
    StateError,
    ValidationError,
)
from src.database import crud
from src.database.models import Order
from src.services.payloads import Payload
from src.services.prompts import Prompt, PromptKind
from src.services.throttle_registry import HOUR, ThrottleRegistry
from src.services.trackers import DeliveryTracker, SessionKind, SessionStore, TrackingKind
from src.services.vouch_service import VouchService


@dataclass(frozen=True)
class Outcome:
    """Result of an engine event, used to answer the callback query"""

    ok: bool
    notice: Optional[str] = None
    alert: bool = False

    @classmethod
    def done(cls, notice: Optional[str] = None) -> "Outcome":
        return cls(True, notice)

    @classmethod
    def refused(cls, notice: str) -> "Outcome":
        return cls(False, notice, alert=True)


CLAIM_STATE_MESSAGES = {
    OrderStatus.AWAITING_PRODUCT: "✅ Payment already confirmed. Your product is on its way.",
    OrderStatus.DELIVERED: "✅ This order has already been completed.",
    OrderStatus.CANCELLED: "❌ This order was cancelled.",
}


def event_boundary(event_name: str):
    """Turn shop errors into refusals and log anything unexpected"""

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(self, *args, **kwargs):
            try:
                return await func(self, *args, **kwargs)
            except ShopError as e:
                logger.info(f"{event_name} refused: {type(e).__name__}: {e.message}")
                return Outcome.refused(e.message)
            except Exception as e:
                logger.exception(f"{event_name} failed: {e}")
                return Outcome.refused(ShopError.default_message)

        return wrapper

    return decorator


class OrderEngine:
    """
    Order lifecycle engine

    Args:
        session_maker: async session factory (C1)
        chat: ChatClient facade (C3)
        registry: ThrottleRegistry (C2)
        tracker: DeliveryTracker for admin-reply routing
        sessions: SessionStore for reply mode and manual delivery
        vouch: VouchService notified after each delivery
        admin_channel: admin group chat id, None to DM the static admins instead
        admin_ids: static admin ids
        fallback_addresses: deposit address per currency when no wallet row is active
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        chat,
        registry: ThrottleRegistry,
        tracker: DeliveryTracker,
        sessions: SessionStore,
        vouch: VouchService,
        admin_channel: Optional[int],
        admin_ids: Iterable[int] = (),
        fallback_addresses: Optional[Dict[Currency, str]] = None,
    ):
        self.session_maker = session_maker
        self.chat = chat
        self.registry = registry
        self.tracker = tracker
        self.sessions = sessions
        self.vouch = vouch
        self.admin_channel = admin_channel
        self.admin_ids = list(admin_ids)
        self.fallback_addresses = fallback_addresses or {}

        self._order_locks: "weakref.WeakValueDictionary[int, asyncio.Lock]" = weakref.WeakValueDictionary()
        self._background: Set[asyncio.Task] = set()

    # ===========================
    # Plumbing
    # ===========================

    @asynccontextmanager
    async def _db(self):
        async with self.session_maker() as session:
            try:
                yield session
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error(f"Database error: {e}")
                raise PersistenceError() from e

    def _order_lock(self, order_id: int) -> asyncio.Lock:
        lock = self._order_locks.get(order_id)
        if lock is None:
            lock = asyncio.Lock()
            self._order_locks[order_id] = lock
        return lock

    def _admin_targets(self) -> List[int]:
        if self.admin_channel is not None:
            return [self.admin_channel]
        return list(self.admin_ids)

    async def _notify_admins(
        self,
        prompt: Prompt,
        targets: Optional[List[int]] = None,
        track: Optional[TrackingKind] = None,
        order_id: Optional[int] = None,
        buyer_id: Optional[int] = None,
        payload: Optional[Payload] = None,
    ) -> int:
        """
        Send a prompt (optionally with a payload) to the admin targets

        Returns:
            Number of targets reached
        """
        reached = 0
        for chat_id in targets if targets is not None else self._admin_targets():
            try:
                if payload is not None:
                    message_id = await self.chat.send_payload(chat_id, payload, prompt)
                else:
                    message_id = await self.chat.send_prompt(chat_id, prompt)
            except ShopError as e:
                logger.warning(f"Admin notification {prompt.kind.value} to {chat_id} failed: {e.message}")
                continue
            reached += 1
            if track is not None:
                self.tracker.track(track, chat_id, message_id, order_id, buyer_id)

        if reached == 0:
            logger.warning(f"Admin notification {prompt.kind.value} reached nobody")
        return reached

    async def _send_quietly(self, chat_id: int, prompt: Prompt) -> bool:
        """Send a prompt whose failure must not abort the event"""
        try:
            await self.chat.send_prompt(chat_id, prompt)
            return True
        except ShopError as e:
            logger.warning(f"{prompt.kind.value} to {chat_id} not delivered: {e.message}")
            return False

    async def _resolve_address(self, session: AsyncSession, currency: Currency) -> Optional[str]:
        address = await crud.get_active_wallet_address(session, currency)
        return address or self.fallback_addresses.get(currency) or None

    def _check_cooldown(self, user_id: int, action: str) -> None:
        allowed, retry_after = self.registry.can_perform(user_id, action)
        if not allowed:
            raise CooldownError(retry_after)

    def _fire_and_forget(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def drain(self) -> None:
        """Wait for fire-and-forget work (vouches) to finish"""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    @staticmethod
    def _order_params(order: Order) -> dict:
        return {
            "order_id": order.id,
            "buyer_id": order.user_id,
            "product_name": order.product.name if order.product else f"Product #{order.product_id}",
            "price": order.price,
            "currency": order.currency,
        }

    async def report_admin_diagnostic(
        self, admin_id: int, reason: str, callback_data: Optional[str] = None
    ) -> None:
        """DM a diagnostic to an admin; never raises"""
        logger.warning(f"Admin diagnostic for {admin_id}: {reason}")
        await self._send_quietly(
            admin_id,
            Prompt(PromptKind.ADMIN_DIAGNOSTIC, {"reason": reason, "callback_data": callback_data}),
        )

    # ===========================
    # BuyRequested
    # ===========================

    @event_boundary("BuyRequested")
    async def buy_requested(self, user_id: int, chat_id: int, product_id: int) -> Outcome:
        async with self._db() as session:
            product = await crud.get_product(session, product_id)
        if product is None:
            raise ProductNotFound()

        await self.chat.send_prompt(
            chat_id,
            Prompt(
                PromptKind.ORDER_SUMMARY,
                {
                    "product_id": product.id,
                    "product_name": product.name,
                    "description": product.description,
                    "price": product.price,
                },
            ),
        )
        return Outcome.done()

    # ===========================
    # PaymentMethodChosen
    # ===========================

    @event_boundary("PaymentMethodChosen")
    async def payment_method_chosen(
        self,
        user_id: int,
        username: Optional[str],
        chat_id: int,
        product_id: int,
        currency: Currency,
    ) -> Outcome:
        async with self._db() as session:
            product = await crud.get_product(session, product_id)
            if product is None:
                raise ProductNotFound()

            address = await self._resolve_address(session, currency)
            if not address:
                logger.error(f"No {currency.value} deposit address configured")
                raise ValidationError(f"❌ {currency.value} payments are temporarily unavailable.")

            try:
                order = await crud.create_order(session, user_id, product, currency)
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error(f"Order creation failed for user {user_id}: {e}")
                raise PersistenceError("❌ Could not create your order. Please try again.") from e

        await self.chat.send_prompt(
            chat_id,
            Prompt(
                PromptKind.PAYMENT_INSTRUCTIONS,
                {
                    "order_id": order.id,
                    "address": address,
                    "amount": order.price,
                    "currency": currency.value,
                    "product_name": product.name,
                },
            ),
        )
        await self._notify_admins(
            Prompt(
                PromptKind.NEW_ORDER_NOTIFICATION,
                {
                    "order_id": order.id,
                    "buyer_id": user_id,
                    "username": username,
                    "product_name": product.name,
                    "price": order.price,
                    "currency": currency.value,
                    "address": address,
                },
            )
        )
        return Outcome.done()

    # ===========================
    # PaymentClaimed
    # ===========================

    async def _remind(self, chat_id: int, order_id: int) -> Outcome:
        await self._send_quietly(chat_id, Prompt(PromptKind.STILL_PROCESSING_REMINDER, {"order_id": order_id}))
        return Outcome.done("⏳ Your payment is already being processed.")

    @event_boundary("PaymentClaimed")
    async def payment_claimed(
        self, user_id: int, username: Optional[str], chat_id: int, order_id: int
    ) -> Outcome:
        # 1. button cooldown (a duplicate inside it still gets the reminder)
        allowed, retry_after = self.registry.can_perform(user_id, "confirm")
        if not allowed:
            if self.registry.is_duplicate_confirmation(user_id, order_id):
                return await self._remind(chat_id, order_id)
            raise CooldownError(retry_after)

        # 2. duplicate
        if self.registry.is_duplicate_confirmation(user_id, order_id):
            logger.info(f"Duplicate payment claim: user {user_id} order {order_id}")
            return await self._remind(chat_id, order_id)

        # reserved before the first await so a concurrent press sees the claim in flight
        self.registry.reserve_confirmation(user_id, order_id)
        try:
            # 3. hourly cap and per-order cooldown
            if self.registry.confirmation_count(user_id, order_id, HOUR) >= self.registry.max_confirmations_per_hour:
                raise CooldownError(HOUR, "🚫 Confirmation limit reached for this order. Please wait for an admin.")
            order_retry = self.registry.confirmation_retry_after(user_id, order_id)
            if order_retry:
                raise CooldownError(order_retry)

            # 4. ownership, 5. status
            async with self._db() as session:
                order = await crud.get_user_order(session, order_id, user_id)
                if order is None:
                    raise OrderNotFound()
                status = order.order_status
                if status is not OrderStatus.PENDING:
                    raise StateError(status, CLAIM_STATE_MESSAGES.get(status))
                address = await self._resolve_address(session, Currency.parse(order.currency))

            params = self._order_params(order)
            params.update({"username": username, "address": address})
            reached = await self._notify_admins(Prompt(PromptKind.PAYMENT_CLAIM_NOTIFICATION, params))
            if reached == 0:
                raise ExternalTransient("⚠️ Could not reach the admins. Please try confirming again.")

            self.registry.record_confirmation(user_id, order_id)
            await self._send_quietly(chat_id, Prompt(PromptKind.PAYMENT_ACKNOWLEDGED, {"order_id": order_id}))
        finally:
            self.registry.release_confirmation(user_id, order_id)

        logger.info(f"Payment claim for order {order_id} forwarded to admins (user {user_id})")
        return Outcome.done("✅ Payment claim sent")

    # ===========================
    # AdminDecision
    # ===========================

    @event_boundary("AdminDecision")
    async def admin_decision(
        self,
        admin_id: int,
        admin_name: Optional[str],
        chat_id: int,
        message_id: Optional[int],
        order_id: int,
        buyer_id: int,
        decision: AdminDecision,
    ) -> Outcome:
        target = (
            OrderStatus.AWAITING_PRODUCT if decision is AdminDecision.CONFIRM else OrderStatus.CANCELLED
        )

        async with self._order_lock(order_id):
            async with self._db() as session:
                order = await crud.get_order(session, order_id)
                if order is None:
                    await self.report_admin_diagnostic(admin_id, f"Order #{order_id} does not exist.")
                    raise OrderNotFound(f"Order #{order_id} not found.")
                if order.user_id != buyer_id:
                    await self.report_admin_diagnostic(
                        admin_id, f"Order #{order_id} belongs to {order.user_id}, not {buyer_id}."
                    )
                    raise ValidationError("Buyer does not match the order.")
                if order.order_status is not OrderStatus.PENDING:
                    raise StateError(order.order_status, f"Order #{order_id} is already {order.status}.")

                params = self._order_params(order)

                # buyer first; a failed notification is logged and does not block the decision
                buyer_prompt = Prompt(
                    PromptKind.PAYMENT_CONFIRMED if decision is AdminDecision.CONFIRM else PromptKind.PAYMENT_REJECTED,
                    params,
                )
                buyer_notified = await self._send_quietly(buyer_id, buyer_prompt)

                changed = await crud.transition_order_status(session, order_id, OrderStatus.PENDING, target)
                if not changed:
                    current = await crud.get_order(session, order_id)
                    raise StateError(current.order_status if current else OrderStatus.PENDING)

            if decision is AdminDecision.CONFIRM:
                upload_targets = [self.admin_channel] if self.admin_channel is not None else [chat_id]
                await self._notify_admins(
                    Prompt(PromptKind.UPLOAD_REQUESTED, params),
                    targets=upload_targets,
                    track=TrackingKind.UPLOAD_REQUEST,
                    order_id=order_id,
                    buyer_id=buyer_id,
                )

            if message_id is not None:
                try:
                    await self.chat.edit_prompt(
                        chat_id,
                        message_id,
                        Prompt(
                            PromptKind.DECISION_RECORDED,
                            {
                                "order_id": order_id,
                                "buyer_id": buyer_id,
                                "decision": decision.value,
                                "admin_id": admin_id,
                                "admin_name": admin_name,
                            },
                        ),
                    )
                except ShopError as e:
                    logger.warning(f"Could not edit decision message for order {order_id}: {e.message}")

        logger.info(f"Admin {admin_id} {decision.value}ed order {order_id}")
        verdict = "confirmed" if decision is AdminDecision.CONFIRM else "cancelled"
        notice = f"Order #{order_id} {verdict}"
        if not buyer_notified:
            notice += " (buyer could not be notified)"
        return Outcome.done(notice)

    # ===========================
    # ProductUploadedForOrder
    # ===========================

    @event_boundary("ProductUploaded")
    async def product_uploaded(
        self, admin_id: int, admin_chat_id: int, order_id: int, payload: Payload
    ) -> Outcome:
        async with self._order_lock(order_id):
            async with self._db() as session:
                order = await crud.get_order(session, order_id)
                if order is None:
                    await self.report_admin_diagnostic(admin_id, f"Order #{order_id} does not exist.")
                    return Outcome.refused(f"Order #{order_id} not found.")
                if order.order_status is not OrderStatus.AWAITING_PRODUCT:
                    await self.report_admin_diagnostic(
                        admin_id,
                        f"Order #{order_id} is {order.status}, not awaiting product. Nothing was sent.",
                    )
                    return Outcome.refused(f"Order #{order_id} is not awaiting product.")

                params = self._order_params(order)
                delivery = Prompt(PromptKind.PRODUCT_DELIVERY, {**params, "details": payload.details})
                try:
                    await self.chat.send_payload(order.user_id, payload, delivery)
                except ShopError as e:
                    logger.error(f"Delivery of order {order_id} to {order.user_id} failed: {e.message}")
                    await self._notify_admins(
                        Prompt(PromptKind.DELIVERY_FAILED, {"order_id": order_id, "error": e.message}),
                        targets=[admin_chat_id],
                    )
                    return Outcome.refused(f"Delivery of order #{order_id} failed.")

                changed = await crud.transition_order_status(
                    session, order_id, OrderStatus.AWAITING_PRODUCT, OrderStatus.DELIVERED
                )
                if not changed:
                    current = await crud.get_order(session, order_id)
                    current_status = current.status if current else "missing"
                    logger.error(f"Order {order_id} delivered but status changed concurrently to {current_status}")
                    await self.report_admin_diagnostic(
                        admin_id,
                        f"Order #{order_id} was sent to the buyer but its status is now {current_status}. "
                        f"It was not marked delivered.",
                    )
                    return Outcome.refused(f"Order #{order_id} changed while delivering.")

            self._fire_and_forget(
                self.vouch.post_vouch(
                    order_id, order.user_id, params["product_name"], order.price, order.currency, payload.kind
                )
            )

            self.tracker.forget_order(order_id, TrackingKind.UPLOAD_REQUEST)
            await self._notify_admins(
                Prompt(PromptKind.DELIVERY_COMPLETED, {**params, "delivery_type": payload.kind.label}),
                targets=[admin_chat_id],
                track=TrackingKind.DELIVERY,
                order_id=order_id,
                buyer_id=order.user_id,
            )
            await self._send_quietly(order.user_id, Prompt(PromptKind.ORDER_COMPLETED, {"order_id": order_id}))

        logger.info(f"Order {order_id} delivered by admin {admin_id} ({payload.kind.value})")
        return Outcome.done(f"Order #{order_id} delivered")

    @event_boundary("ManualDelivery")
    async def begin_manual_delivery(self, admin_id: int, chat_id: int, order_id: int) -> Outcome:
        """/deliver <orderId>: the admin's next message becomes the product upload"""
        async with self._db() as session:
            order = await crud.get_order(session, order_id)
        if order is None:
            return Outcome.refused(f"Order #{order_id} not found.")
        if order.order_status is not OrderStatus.AWAITING_PRODUCT:
            return Outcome.refused(f"Order #{order_id} is {order.status}, not awaiting product.")

        self.sessions.start(admin_id, SessionKind.DELIVER, "awaiting_payload", order_id=order_id, chat_id=chat_id)
        return Outcome.done(
            f"📤 Send the product for order #{order_id} now "
            f"(file, image, video or text). /cancel to abort."
        )

    async def consume_manual_delivery(
        self, admin_id: int, chat_id: int, payload: Optional[Payload]
    ) -> Optional[Outcome]:
        """Deliver the payload if the admin has a /deliver session; None otherwise"""
        session = self.sessions.get(admin_id, SessionKind.DELIVER)
        if session is None:
            return None
        if payload is None:
            return Outcome.refused("Unsupported message type. Send a file, image, video or text.")
        self.sessions.clear(admin_id)
        return await self.product_uploaded(admin_id, chat_id, session.payload["order_id"], payload)

    # ===========================
    # Admin reply routing
    # ===========================

    async def route_admin_reply(
        self,
        admin_id: int,
        admin_chat_id: int,
        reply_to_message_id: int,
        payload: Optional[Payload],
    ) -> Optional[Outcome]:
        """
        Route an admin reply to a tracked message

        Returns:
            None if the replied-to message is not tracked, else the outcome
        """
        entry = self.tracker.lookup(admin_chat_id, reply_to_message_id)
        if entry is None:
            return None

        if payload is None:
            await self.report_admin_diagnostic(
                admin_id, f"Unsupported message type for order #{entry.order_id}. Send a file, image, video or text."
            )
            return Outcome.refused("Unsupported message type.")

        if entry.kind is TrackingKind.UPLOAD_REQUEST:
            return await self.product_uploaded(admin_id, admin_chat_id, entry.order_id, payload)

        support = Prompt(PromptKind.SUPPORT_MESSAGE, {"order_id": entry.order_id, "details": payload.details})
        try:
            await self.chat.send_payload(entry.buyer_id, payload, support)
        except ShopError as e:
            logger.warning(f"Support reply for order {entry.order_id} not delivered: {e.message}")
            await self.report_admin_diagnostic(
                admin_id, f"Could not message buyer {entry.buyer_id} (order #{entry.order_id}): {e.message}"
            )
            return Outcome.refused("Buyer could not be reached.")

        await self._send_quietly(
            admin_chat_id,
            Prompt(PromptKind.RELAY_CONFIRMED, {"order_id": entry.order_id, "buyer_id": entry.buyer_id}),
        )
        logger.info(f"Admin {admin_id} replied to buyer {entry.buyer_id} about order {entry.order_id}")
        return Outcome.done()

    @event_boundary("ReplyToAdmin")
    async def activate_reply_mode(self, user_id: int, chat_id: int, order_id: int) -> Outcome:
        async with self._db() as session:
            order = await crud.get_user_order(session, order_id, user_id)
        if order is None:
            raise OrderNotFound()

        self.sessions.start(user_id, SessionKind.REPLY_MODE, "awaiting_message", order_id=order_id)
        await self.chat.send_prompt(
            chat_id,
            Prompt(PromptKind.REPLY_MODE_ACTIVATED, {"order_id": order_id, "minutes": self.sessions.timeout_minutes}),
        )
        return Outcome.done()

    async def relay_buyer_reply(
        self, user_id: int, username: Optional[str], chat_id: int, payload: Optional[Payload]
    ) -> bool:
        """
        Forward a buyer's message to the admins if the buyer is in reply mode

        Returns:
            True if the message was consumed by reply mode
        """
        session = self.sessions.get(user_id, SessionKind.REPLY_MODE)
        if session is None:
            return False
        if payload is None:
            await self._send_quietly(
                chat_id, Prompt(PromptKind.ERROR, {"message": "Please send text, a file, an image or a video."})
            )
            return True

        self.sessions.clear(user_id)
        order_id = session.payload["order_id"]
        prompt = Prompt(
            PromptKind.BUYER_REPLY,
            {"order_id": order_id, "buyer_id": user_id, "username": username, "details": payload.details},
        )
        reached = await self._notify_admins(
            prompt, track=TrackingKind.DELIVERY, order_id=order_id, buyer_id=user_id, payload=payload
        )
        if reached:
            await self._send_quietly(chat_id, Prompt(PromptKind.BUYER_REPLY_SENT, {"order_id": order_id}))
        else:
            await self._send_quietly(
                chat_id, Prompt(PromptKind.ERROR, {"message": "⚠️ Support is unreachable right now, please try later."})
            )
        return True

    # ===========================
    # CustomerCancelRequested
    # ===========================

    @event_boundary("CustomerCancel")
    async def customer_cancel(
        self,
        user_id: int,
        username: Optional[str],
        chat_id: int,
        message_id: Optional[int],
        order_id: int,
    ) -> Outcome:
        self._check_cooldown(user_id, "cancel")

        async with self._order_lock(order_id):
            async with self._db() as session:
                order = await crud.get_user_order(session, order_id, user_id)
                if order is None:
                    raise OrderNotFound()
                if order.order_status is not OrderStatus.PENDING:
                    raise StateError(
                        order.order_status,
                        f"Only pending orders can be cancelled. Order #{order_id} is {order.status.replace('_', ' ')}.",
                    )

                changed = await crud.transition_order_status(
                    session, order_id, OrderStatus.PENDING, OrderStatus.CANCELLED
                )
                if not changed:
                    current = await crud.get_order(session, order_id)
                    raise StateError(current.order_status if current else OrderStatus.PENDING)

        await self._notify_admins(
            Prompt(PromptKind.ORDER_CANCELLED_ADMIN, {"order_id": order_id, "buyer_id": user_id, "username": username})
        )

        cancelled = Prompt(PromptKind.ORDER_CANCELLED, {"order_id": order_id})
        edited = False
        if message_id is not None:
            try:
                edited = await self.chat.edit_prompt(chat_id, message_id, cancelled)
            except ShopError as e:
                logger.warning(f"Could not edit cancelled order {order_id} message: {e.message}")
        if not edited:
            await self._send_quietly(chat_id, cancelled)

        logger.info(f"Order {order_id} cancelled by customer {user_id}")
        return Outcome.done("Order cancelled")

    # ===========================
    # Status / copy address
    # ===========================

    @event_boundary("OrderStatus")
    async def order_status(self, user_id: int, chat_id: int, order_id: int) -> Outcome:
        self._check_cooldown(user_id, "status")

        async with self._db() as session:
            order = await crud.get_user_order(session, order_id, user_id)
        if order is None:
            raise OrderNotFound()

        params = self._order_params(order)
        params["status"] = order.status
        await self.chat.send_prompt(chat_id, Prompt(PromptKind.ORDER_STATUS, params))
        return Outcome.done()

    @event_boundary("CopyAddress")
    async def copy_address(
        self, user_id: int, chat_id: int, order_id: Optional[int], address: Optional[str]
    ) -> Outcome:
        self._check_cooldown(user_id, "copy")

        currency = "Deposit"
        if order_id is not None:
            async with self._db() as session:
                order = await crud.get_user_order(session, order_id, user_id)
                if order is None:
                    raise OrderNotFound()
                currency = order.currency
                address = await self._resolve_address(session, Currency.parse(order.currency))
        if not address:
            raise ValidationError("❌ Address unavailable.")

        await self.chat.send_prompt(chat_id, Prompt(PromptKind.COPY_ADDRESS, {"address": address, "currency": currency}))
        return Outcome.done("📋 Address sent")
