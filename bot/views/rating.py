from __future__ import annotations

from dataclasses import dataclass

import discord

RATING_PREFIX = "rate"


@dataclass(slots=True)
class RatingChoice:
    kind: str
    ticket_id: str
    score: int
    staff_id: int | None = None


def rating_custom_id(kind: str, ticket_id: int | str, score: int, staff_id: int | None = None) -> str:
    if kind == "trade":
        return f"{RATING_PREFIX}:trade:{ticket_id}:{staff_id}:{score}"
    return f"{RATING_PREFIX}:service:{ticket_id}:{score}"


def parse_rating_custom_id(custom_id: str) -> RatingChoice | None:
    """Decode ``rate:trade:<ticket>:<staff>:<score>`` or ``rate:service:<ticket>:<score>``."""
    parts = custom_id.split(":")
    if len(parts) < 4 or parts[0] != RATING_PREFIX:
        return None
    kind = "trade" if parts[1] in {"trade", "mm"} else parts[1]
    if kind == "trade" and len(parts) == 5 and parts[3].isdigit() and parts[4].isdigit():
        return RatingChoice(kind=kind, ticket_id=parts[2], staff_id=int(parts[3]), score=int(parts[4]))
    if kind == "service" and len(parts) == 4 and parts[3].isdigit():
        return RatingChoice(kind=kind, ticket_id=parts[2], score=int(parts[3]))
    return None


class RatingView(discord.ui.View):
    """Star rows sent by DM after a ticket closes.

    Clicks are handled by the ratings cog's interaction listener using the
    custom id alone, so the buttons work even after a restart.
    """

    def __init__(self, ticket_id: int, staff_id: int | None) -> None:
        super().__init__(timeout=None)
        if staff_id is not None:
            for score in range(1, 6):
                self.add_item(
                    discord.ui.Button(
                        label="★" * score,
                        style=discord.ButtonStyle.primary,
                        custom_id=rating_custom_id("trade", ticket_id, score, staff_id),
                        row=0,
                    )
                )
        for score in range(1, 6):
            self.add_item(
                discord.ui.Button(
                    label="★" * score,
                    style=discord.ButtonStyle.secondary,
                    custom_id=rating_custom_id("service", ticket_id, score),
                    row=1 if staff_id is not None else 0,
                )
            )


def disabled_copy(message: discord.Message, kind: str | None = None) -> discord.ui.View:
    """Rebuild a message's buttons with the ``kind`` row (or every row) disabled."""
    view = discord.ui.View.from_message(message, timeout=None)
    for item in view.children:
        if not isinstance(item, discord.ui.Button):
            continue
        choice = parse_rating_custom_id(item.custom_id or "")
        if kind is None or (choice is not None and choice.kind == kind):
            item.disabled = True
    return view
