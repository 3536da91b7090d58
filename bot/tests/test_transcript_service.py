from __future__ import annotations

from datetime import UTC, datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import discord
import pytest

from core.config import TranscriptConfig
from database.models import Branding
from fakes import make_guild, make_text_channel
from services.transcript_service import TranscriptArtifacts, TranscriptService


class Author:
    def __init__(self, name: str, author_id: int) -> None:
        self.name = name
        self.id = author_id

    def __str__(self) -> str:
        return self.name


def _message(content: str, *, embeds=(), attachments=()) -> SimpleNamespace:
    return SimpleNamespace(
        author=Author("opener", 42),
        content=content,
        created_at=datetime(2024, 1, 1, 12, 0, tzinfo=UTC),
        embeds=list(embeds),
        attachments=list(attachments),
    )


def _channel(messages: list[SimpleNamespace]) -> MagicMock:
    channel = make_text_channel(500, make_guild(), name="support-opener")

    async def history(limit=None, oldest_first=False):
        for message in messages[:limit]:
            yield message

    channel.history = history
    return channel


@pytest.mark.asyncio
async def test_generate_writes_html_and_text(tmp_path) -> None:
    service = TranscriptService(TranscriptConfig(storage_directory=str(tmp_path)))
    messages = [
        _message("hello <b>staff</b>"),
        _message(
            "",
            embeds=[SimpleNamespace(title="Support Ticket", description="Opened")],
            attachments=[SimpleNamespace(url="https://cdn.example/a.png", filename="a.png")],
        ),
    ]

    artifacts = await service.generate(_channel(messages), Branding(name="Dragon", accent="#00ff00"))

    assert artifacts.message_count == 2
    page = artifacts.html_path.read_text(encoding="utf-8")
    assert "hello &lt;b&gt;staff&lt;/b&gt;" in page
    assert "Dragon - #support-opener" in page
    assert "#00ff00" in page
    text = artifacts.txt_path.read_text(encoding="utf-8").splitlines()
    assert text[0] == "[2024-01-01T12:00:00+00:00] opener (42): hello <b>staff</b>"
    assert "  embed: Support Ticket Opened" in text
    assert "  attachment: https://cdn.example/a.png" in text


@pytest.mark.asyncio
async def test_generate_respects_formats_and_limit(tmp_path) -> None:
    service = TranscriptService(TranscriptConfig(storage_directory=str(tmp_path), html_enabled=False))

    artifacts = await service.generate(_channel([_message("one"), _message("two")]), limit=1)

    assert artifacts.html_path is None
    assert artifacts.paths == [artifacts.txt_path]
    assert artifacts.message_count == 1


@pytest.mark.asyncio
async def test_publish_uploads_files(tmp_path) -> None:
    path = tmp_path / "t.txt"
    path.write_text("log", encoding="utf-8")
    destination = MagicMock()
    destination.send = AsyncMock()
    service = TranscriptService(TranscriptConfig(storage_directory=str(tmp_path)))

    sent = await service.publish(TranscriptArtifacts(html_path=None, txt_path=path, message_count=3), destination, "support-x")

    assert sent is True
    kwargs = destination.send.await_args.kwargs
    assert kwargs["content"] == "Transcript for `#support-x` (3 messages)"
    assert [file.filename for file in kwargs["files"]] == ["t.txt"]


@pytest.mark.asyncio
async def test_publish_failure_is_reported(tmp_path) -> None:
    path = tmp_path / "t.txt"
    path.write_text("log", encoding="utf-8")
    destination = MagicMock()
    destination.send = AsyncMock(side_effect=discord.HTTPException(MagicMock(status=500, reason="boom"), "boom"))
    service = TranscriptService(TranscriptConfig(storage_directory=str(tmp_path)))

    assert await service.publish(TranscriptArtifacts(None, path, 1), destination, "x") is False
    assert await service.publish(TranscriptArtifacts(None, None), destination, "x") is False
