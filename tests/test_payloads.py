"""
Tests for delivery payload normalization
"""

from types import SimpleNamespace

from src.core.enums import PayloadKind
from src.services.payloads import Payload, normalize_payload


def photo(file_id, width, height, file_size=0):
    return SimpleNamespace(file_id=file_id, width=width, height=height, file_size=file_size)


def test_document_wins_over_everything():
    payload = normalize_payload(
        document=SimpleNamespace(file_id="doc"),
        photo=[photo("p", 10, 10)],
        video=SimpleNamespace(file_id="vid"),
        caption="license inside",
    )

    assert payload == Payload(PayloadKind.DOCUMENT, file_id="doc", caption="license inside")
    assert payload.details == "license inside"


def test_largest_photo_variant_is_chosen():
    sizes = [photo("big", 1280, 720), photo("small", 90, 51), photo("medium", 320, 180)]

    payload = normalize_payload(photo=sizes, video=SimpleNamespace(file_id="vid"))

    assert payload.kind is PayloadKind.PHOTO
    assert payload.file_id == "big"


def test_video_before_text():
    payload = normalize_payload(video=SimpleNamespace(file_id="vid"), text="ignored")

    assert payload.kind is PayloadKind.VIDEO
    assert payload.details == ""


def test_text_is_stripped():
    payload = normalize_payload(text="  KEY-1234-ABCD \n")

    assert payload == Payload(PayloadKind.TEXT, text="KEY-1234-ABCD")
    assert payload.details == "KEY-1234-ABCD"


def test_nothing_deliverable():
    assert normalize_payload() is None
    assert normalize_payload(text="   ") is None
    assert normalize_payload(photo=[]) is None
