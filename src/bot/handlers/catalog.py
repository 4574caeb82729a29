"""
Catalog browsing: root categories, subcategories and products
"""

from html import escape
from typing import List

from aiogram import Router, F
from aiogram.types import CallbackQuery, InlineKeyboardMarkup, InlineKeyboardButton
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.exceptions import ValidationError
from src.database import crud
from src.database.models import Category, Product
from src.services.chat_client import ChatClient
from src.services.prompts import format_price
from src.utils import callback_data as cb

router = Router(name="catalog")

CATALOG_TITLE = "🛍️ <b>Catalog</b>\n\nChoose a category:"


def root_keyboard(categories: List[Category]) -> InlineKeyboardMarkup:
    """One button per root category"""
    return InlineKeyboardMarkup(
        inline_keyboard=[
            [InlineKeyboardButton(text=f"📂 {category.name}", callback_data=cb.category(category.id))]
            for category in categories
        ]
    )


def category_keyboard(
    subcategories: List[Category], products: List[Product]
) -> InlineKeyboardMarkup:
    """Subcategories first, then products with their price"""
    rows = [
        [InlineKeyboardButton(text=f"📂 {sub.name}", callback_data=cb.category(sub.id))]
        for sub in subcategories
    ]
    rows += [
        [
            InlineKeyboardButton(
                text=f"{product.name} - {format_price(product.price)}",
                callback_data=cb.buy(product.id),
            )
        ]
        for product in products
    ]
    return InlineKeyboardMarkup(inline_keyboard=rows)


async def render_root(session: AsyncSession):
    categories = await crud.list_root_categories(session)
    if not categories:
        return "🛍️ <b>Catalog</b>\n\nThe catalog is empty right now. Please check back later.", None
    return CATALOG_TITLE, root_keyboard(categories)


@router.callback_query(F.data.startswith(cb.CATEGORY))
async def category_callback(callback: CallbackQuery, session: AsyncSession, chat: ChatClient):
    """cat_<categoryId>"""
    try:
        category_id = cb.parse_id(callback.data, cb.CATEGORY)
    except ValidationError as e:
        await callback.answer(e.message, show_alert=True)
        return

    category = await crud.get_category(session, category_id)
    if category is None:
        await callback.answer("❌ Category not found.", show_alert=True)
        return

    subcategories = await crud.list_subcategories(session, category_id)
    products = await crud.list_products_in_category(session, category_id)
    logger.debug(
        f"Category {category_id} opened by {callback.from_user.id}: "
        f"{len(subcategories)} subcategories, {len(products)} products"
    )

    if subcategories or products:
        text = f"📂 <b>{escape(category.name)}</b>\n\nChoose a product:"
    else:
        text = f"📂 <b>{escape(category.name)}</b>\n\nNo products available in this category yet."
    keyboard = category_keyboard(subcategories, products)

    edited = False
    if callback.message:
        edited = await chat.edit_text(
            callback.message.chat.id, callback.message.message_id, text, keyboard
        )
    if not edited:
        await chat.send_text(callback.from_user.id, text, keyboard)
    await callback.answer()
