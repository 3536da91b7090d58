from __future__ import annotations

import discord
import pytest

from views.rating import RatingChoice, RatingView, parse_rating_custom_id, rating_custom_id


def test_custom_id_formats() -> None:
    assert rating_custom_id("trade", 42, 5, staff_id=7) == "rate:trade:42:7:5"
    assert rating_custom_id("service", 42, 3) == "rate:service:42:3"


@pytest.mark.parametrize(
    ("custom_id", "expected"),
    [
        ("rate:trade:42:7:5", RatingChoice(kind="trade", ticket_id="42", score=5, staff_id=7)),
        ("rate:mm:42:7:2", RatingChoice(kind="trade", ticket_id="42", score=2, staff_id=7)),
        ("rate:service:42:4", RatingChoice(kind="service", ticket_id="42", score=4)),
        ("rate:service:42", None),
        ("rate:trade:42:x:5", None),
        ("ticket:claim", None),
    ],
)
def test_parse_rating_custom_id(custom_id: str, expected: RatingChoice | None) -> None:
    assert parse_rating_custom_id(custom_id) == expected


@pytest.mark.asyncio
async def test_rating_view_rows() -> None:
    with_staff = RatingView(ticket_id=42, staff_id=7)
    service_only = RatingView(ticket_id=42, staff_id=None)

    ids = [item.custom_id for item in with_staff.children if isinstance(item, discord.ui.Button)]
    assert len(ids) == 10
    assert ids[0] == "rate:trade:42:7:1"
    assert ids[-1] == "rate:service:42:5"
    assert with_staff.timeout is None

    service_ids = [item.custom_id for item in service_only.children]
    assert service_ids == [f"rate:service:42:{score}" for score in range(1, 6)]
