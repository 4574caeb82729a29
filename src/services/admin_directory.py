# coding: utf-8
"""
Admin Directory - who may use operator commands and admin callbacks

Static ADMIN_IDS are always admins. When ADMIN_GROUP is configured, its
current (non-bot) administrators are admins too; the set is refreshed
periodically and the last known set is kept if Telegram is unreachable.
"""
from typing import Iterable, Optional, Set

from loguru import logger

from src.core.exceptions import ShopError


class AdminDirectory:
    """
    Args:
        static_ids: ids from configuration
        chat: ChatClient used to list group administrators
        admin_group: group whose administrators are admins, None to disable
    """

    def __init__(self, static_ids: Iterable[int], chat=None, admin_group: Optional[int] = None):
        self.static_ids: Set[int] = set(static_ids)
        self.chat = chat
        self.admin_group = admin_group
        self._group_admins: Set[int] = set()

    def is_admin(self, user_id: int) -> bool:
        return user_id in self.static_ids or user_id in self._group_admins

    @property
    def all_ids(self) -> Set[int]:
        return self.static_ids | self._group_admins

    async def refresh(self) -> int:
        """
        Reload the admin group's administrators

        Returns:
            Number of group administrators known after the refresh
        """
        if self.chat is None or self.admin_group is None:
            return 0
        try:
            ids = await self.chat.get_chat_administrators(self.admin_group)
        except ShopError as e:
            logger.warning(f"Admin list refresh failed, keeping {len(self._group_admins)} known: {e.message}")
            return len(self._group_admins)

        added = set(ids) - self._group_admins
        removed = self._group_admins - set(ids)
        if added or removed:
            logger.info(f"Admin group changed: +{sorted(added)} -{sorted(removed)}")
        self._group_admins = set(ids)
        return len(self._group_admins)
