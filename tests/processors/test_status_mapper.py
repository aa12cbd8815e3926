import pytest

from conduit.processors.status_mapper import map_provider_status
from conduit.schemas.core.types import MessageStatus


@pytest.mark.parametrize(
    "code,expected",
    [
        (0, MessageStatus.FAILED),
        (2, MessageStatus.SENT),
        (3, MessageStatus.DELIVERED),
        (4, MessageStatus.READ),
        (5, MessageStatus.READ),
        ("3", MessageStatus.DELIVERED),
        ("ERROR", MessageStatus.FAILED),
        ("SERVER_ACK", MessageStatus.SENT),
        ("DELIVERY_ACK", MessageStatus.DELIVERED),
        ("PLAYED", MessageStatus.READ),
        ("delivered", MessageStatus.DELIVERED),
        ("failed", MessageStatus.FAILED),
    ],
)
def test_known_codes(code, expected):
    assert map_provider_status(code) == expected


@pytest.mark.parametrize("code", [None, 42, "deleted", "", True])
def test_unknown_codes_count_as_sent(code):
    assert map_provider_status(code) == MessageStatus.SENT
