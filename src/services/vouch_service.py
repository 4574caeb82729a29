# coding: utf-8
"""
Vouch Service - social-proof posts for completed deliveries

Posts to VOUCH_CHANNEL when configured. Never raises: a failed or disabled
vouch must not affect the delivery that triggered it.
"""
from html import escape
from typing import Optional

from loguru import logger

from src.core.enums import PayloadKind
from src.core.exceptions import ShopError
from src.services.prompts import format_price


class VouchService:
    """
    Completion-vouch collaborator

    Args:
        chat: ChatClient used to post
        channel_id: destination channel, None disables vouching
    """

    def __init__(self, chat, channel_id: Optional[int]):
        self.chat = chat
        self.channel_id = channel_id

        if channel_id is None:
            logger.warning("VOUCH_CHANNEL not configured - delivery vouches disabled")

    @staticmethod
    def format_vouch(
        order_id: int,
        buyer_id: int,
        product_name: str,
        price,
        currency: str,
        delivery_kind: PayloadKind,
    ) -> str:
        return (
            "✅ <b>Order Completed</b>\n\n"
            f"👤 Customer #{buyer_id}\n"
            f"📦 {escape(product_name)}\n"
            f"💵 {format_price(price)} paid in {currency}\n"
            f"🚚 Delivery: {delivery_kind.label}\n"
            f"🧾 Order #{order_id}"
        )

    async def post_vouch(
        self,
        order_id: int,
        buyer_id: int,
        product_name: str,
        price,
        currency: str,
        delivery_kind: PayloadKind,
    ) -> bool:
        """
        Post a vouch for a delivered order

        Returns:
            True if posted, False if disabled or failed
        """
        if self.channel_id is None:
            return False

        text = self.format_vouch(order_id, buyer_id, product_name, price, currency, delivery_kind)
        try:
            await self.chat.send_text(self.channel_id, text)
        except ShopError as e:
            logger.warning(f"Vouch for order {order_id} not posted: {e.message}")
            return False
        except Exception as e:
            logger.exception(f"Unexpected error posting vouch for order {order_id}: {e}")
            return False

        logger.info(f"Vouch posted for order {order_id}")
        return True
