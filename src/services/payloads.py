# coding: utf-8
"""
Delivery payloads

A product upload or an admin reply is reduced to exactly one Payload:
document > photo (largest variant) > video > text.
"""
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from aiogram.types import Message

from src.core.enums import PayloadKind


@dataclass(frozen=True)
class Payload:
    """Tagged delivery payload"""

    kind: PayloadKind
    file_id: Optional[str] = None
    text: Optional[str] = None
    caption: Optional[str] = None

    @property
    def details(self) -> str:
        """Human-readable part of the payload (message text or caption)"""
        return (self.text if self.kind is PayloadKind.TEXT else self.caption) or ""


def _largest_photo(photo: Sequence[Any]) -> Any:
    # Telegram lists sizes ascending; compare explicitly in case a client does not
    return max(
        photo,
        key=lambda size: (
            (getattr(size, "width", 0) or 0) * (getattr(size, "height", 0) or 0),
            getattr(size, "file_size", 0) or 0,
        ),
    )


def normalize_payload(
    document: Any = None,
    photo: Optional[Sequence[Any]] = None,
    video: Any = None,
    text: Optional[str] = None,
    caption: Optional[str] = None,
) -> Optional[Payload]:
    """
    Pick the single payload to deliver

    Args:
        document: Document attachment (needs .file_id)
        photo: Photo size variants (each needs .file_id, .width, .height)
        video: Video attachment (needs .file_id)
        text: Message text
        caption: Media caption

    Returns:
        Payload, or None when there is nothing deliverable
    """
    if document is not None:
        return Payload(PayloadKind.DOCUMENT, file_id=document.file_id, caption=caption)
    if photo:
        return Payload(PayloadKind.PHOTO, file_id=_largest_photo(photo).file_id, caption=caption)
    if video is not None:
        return Payload(PayloadKind.VIDEO, file_id=video.file_id, caption=caption)

    body = (text or caption or "").strip()
    if body:
        return Payload(PayloadKind.TEXT, text=body)
    return None


def payload_from_message(message: Message) -> Optional[Payload]:
    """Normalize an inbound aiogram Message"""
    return normalize_payload(
        document=message.document,
        photo=message.photo,
        video=message.video,
        text=message.text,
        caption=message.caption,
    )
