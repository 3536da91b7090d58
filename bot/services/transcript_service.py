from __future__ import annotations

import asyncio
import html
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

import discord

from core.config import TranscriptConfig
from database.models import Branding

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class TranscriptArtifacts:
    html_path: Path | None
    txt_path: Path | None
    message_count: int = 0

    @property
    def paths(self) -> list[Path]:
        return [path for path in (self.html_path, self.txt_path) if path is not None]


class TranscriptService:
    """Renders a ticket's history to disk and uploads it when the ticket closes."""

    def __init__(self, config: TranscriptConfig) -> None:
        self.config = config
        self.base_dir = Path(config.storage_directory)

    async def generate(
        self,
        channel: discord.TextChannel,
        branding: Branding | None = None,
        limit: int | None = None,
    ) -> TranscriptArtifacts:
        ticket_dir = self.base_dir / str(channel.guild.id) / str(channel.id)

        messages: list[discord.Message] = []
        async for message in channel.history(limit=limit or self.config.message_limit, oldest_first=True):
            messages.append(message)

        html_path: Path | None = None
        txt_path: Path | None = None
        writes: list[tuple[Path, str]] = []
        if self.config.html_enabled:
            html_path = ticket_dir / f"{channel.name}.html"
            writes.append((html_path, self._build_html(channel, messages, branding)))
        if self.config.txt_enabled:
            txt_path = ticket_dir / f"{channel.name}.txt"
            writes.append((txt_path, self._build_text(messages)))

        await asyncio.to_thread(self._write_all, ticket_dir, writes)
        LOGGER.info(
            "Wrote transcript of %s messages", len(messages), extra={"guild_id": channel.guild.id, "channel_id": channel.id}
        )
        return TranscriptArtifacts(html_path=html_path, txt_path=txt_path, message_count=len(messages))

    @staticmethod
    def _write_all(directory: Path, writes: list[tuple[Path, str]]) -> None:
        directory.mkdir(parents=True, exist_ok=True)
        for path, content in writes:
            path.write_text(content, encoding="utf-8")

    async def publish(
        self,
        artifacts: TranscriptArtifacts,
        destination: discord.abc.Messageable,
        ticket_name: str,
    ) -> bool:
        if not artifacts.paths:
            return False
        files = [discord.File(path, filename=path.name) for path in artifacts.paths]
        try:
            await destination.send(
                content=f"Transcript for `#{ticket_name}` ({artifacts.message_count} messages)",
                files=files,
            )
        except discord.HTTPException:
            LOGGER.warning("Could not upload transcript for %s", ticket_name, exc_info=True)
            return False
        finally:
            for file in files:
                file.close()
        return True

    @staticmethod
    def _build_text(messages: Iterable[discord.Message]) -> str:
        lines: list[str] = []
        for msg in messages:
            author = f"{msg.author} ({msg.author.id})"
            created = msg.created_at.isoformat()
            lines.append(f"[{created}] {author}: {msg.content or ''}")
            for embed in msg.embeds:
                if embed.title or embed.description:
                    lines.append(f"  embed: {embed.title or ''} {embed.description or ''}".rstrip())
            for attach in msg.attachments:
                lines.append(f"  attachment: {attach.url}")
        return "\n".join(lines)

    @staticmethod
    def _build_html(
        channel: discord.TextChannel,
        messages: Iterable[discord.Message],
        branding: Branding | None = None,
    ) -> str:
        accent = branding.accent if branding and branding.accent else "#5865f2"
        heading = html.escape(branding.name) if branding and branding.name else "Transcript"
        rows: list[str] = []
        for msg in messages:
            attachment_html = ""
            if msg.attachments:
                links = "".join(
                    f'<li><a href="{html.escape(a.url)}">{html.escape(a.filename)}</a></li>'
                    for a in msg.attachments
                )
                attachment_html = f"<ul>{links}</ul>"
            embed_html = "".join(
                f"<div class='embed'><b>{html.escape(e.title or '')}</b><br>{html.escape(e.description or '')}</div>"
                for e in msg.embeds
                if e.title or e.description
            )
            rows.append(
                "<div class='msg'>"
                f"<div class='meta'>{html.escape(str(msg.author))} | {msg.created_at.isoformat()}</div>"
                f"<div class='content'>{html.escape(msg.content or '')}</div>"
                f"{embed_html}{attachment_html}"
                "</div>"
            )

        return (
            "<!doctype html><html><head><meta charset='utf-8'>"
            "<style>"
            "body{font-family:Arial,sans-serif;background:#f5f7fb;color:#1f2937;padding:16px;}"
            f"h1{{border-left:6px solid {accent};padding-left:10px;}}"
            ".msg{background:white;border:1px solid #e5e7eb;border-radius:8px;padding:10px;margin-bottom:8px;}"
            ".meta{font-size:12px;color:#6b7280;margin-bottom:6px;}"
            ".content{white-space:pre-wrap;}"
            f".embed{{border-left:4px solid {accent};padding:6px;margin-top:6px;white-space:pre-wrap;}}"
            "</style></head><body>"
            f"<h1>{heading} - #{html.escape(channel.name)}</h1>"
            + "".join(rows)
            + "</body></html>"
        )
