"""Notification formatting for the Telegram Bot API.

Keeping formatting here prevents drift between adapters and keeps messages
consistent regardless of which bot delivers them. Only MarkdownV2 is
supported; any other parse mode is rejected.

Rendering order:
1) bold title, optionally prefixed with ``[app name]``
2) body, with image markup reduced to its URL and inline links kept intact
3) priority indicator above the configured threshold
4) sorted extras block
5) timestamp
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Mapping, Optional

from core.config import FormatOptions, SUPPORTED_PARSE_MODES
from core.errors import ConfigurationError
from core.models import EnrichedMessage, Extra, ExtraMap

RESERVED_CHARACTERS = "_*[]()~`>#+-=|{}.!"

_RESERVED_RE = re.compile("([" + re.escape(RESERVED_CHARACTERS) + "])")
_URL_RESERVED_RE = re.compile(r"([()])")
_CODE_RESERVED_RE = re.compile(r"([`\\])")

# Image markup must be tried first: "![alt](url)" also contains a link.
_MARKUP_RE = re.compile(
    r"(?P<image>!\[[^\]]*\]\((?P<image_url>[^)]+)\))"
    r"|(?P<link>\[(?P<link_text>[^\]]+)\]\((?P<link_url>[^)]+)\))"
)

EXTRAS_HEADER = "*Additional Info:*"
BULLET = "•"
INDENT = "  "


def escape_markdown_v2(text: str) -> str:
    """Prefix every MarkdownV2 reserved character with a backslash.

    Backslashes themselves are never escaped, so literal ``\\n`` sequences in
    the source text stay as they are.
    """

    return _RESERVED_RE.sub(r"\\\1", text)


def escape_url(url: str) -> str:
    """Escape only the characters that would end a link target early."""

    return _URL_RESERVED_RE.sub(r"\\\1", url)


def escape_code(text: str) -> str:
    return _CODE_RESERVED_RE.sub(r"\\\1", text)


def format_body(text: str) -> str:
    """Escape a message body while keeping its links usable.

    ``![alt](url)`` becomes the escaped bare URL, ``[text](url)`` keeps its
    structure with the text and the URL escaped separately, and everything
    else is escaped with the full reserved set.
    """

    parts: list[str] = []
    position = 0
    for match in _MARKUP_RE.finditer(text):
        parts.append(escape_markdown_v2(text[position:match.start()]))
        if match.group("image"):
            parts.append(escape_markdown_v2(match.group("image_url")))
        else:
            link_text = escape_markdown_v2(match.group("link_text"))
            link_url = escape_url(match.group("link_url"))
            parts.append(f"[{link_text}]({link_url})")
        position = match.end()
    parts.append(escape_markdown_v2(text[position:]))
    return "".join(parts)


def format_title(message: EnrichedMessage, include_app_name: bool) -> str:
    """Return the unescaped title text."""

    if include_app_name:
        return f"[{message.app_name}] {message.title}"
    return message.title


def priority_indicator(priority: int) -> str:
    if priority >= 8:
        return "🔴 Critical Priority"
    if priority >= 6:
        return "🟠 High Priority"
    if priority >= 4:
        return "🟡 Medium Priority"
    return "🟢 Low Priority"


def format_extras(extras: Mapping[str, Extra], prefix: str = "") -> str:
    """Render extras as a bullet list sorted by key, nesting by indentation."""

    lines: list[str] = []
    for key in sorted(extras):
        value = extras[key]
        escaped_key = escape_markdown_v2(key)
        if isinstance(value, ExtraMap):
            lines.append(f"\n{prefix}{BULLET} {escaped_key}:")
            lines.append(format_extras(value.items, prefix + INDENT))
        else:
            lines.append(f"\n{prefix}{BULLET} {escaped_key}: `{escape_code(value.value)}`")
    return "".join(lines)


def format_timestamp(now: datetime) -> str:
    return now.astimezone().isoformat(timespec="seconds")


def format_message(
    message: EnrichedMessage,
    options: FormatOptions,
    now: Optional[datetime] = None,
) -> str:
    """Return the message rendered for the requested parse mode."""

    if options.parse_mode not in SUPPORTED_PARSE_MODES:
        raise ConfigurationError(f"parse mode {options.parse_mode} is not supported")

    sections: list[str] = []
    if message.title:
        title = format_title(message, options.include_app_name)
        sections.append(f"*{escape_markdown_v2(title)}*")

    if message.message:
        sections.append(format_body(message.message))

    if options.include_priority and message.priority > options.priority_threshold:
        sections.append(escape_markdown_v2(priority_indicator(message.priority)))

    if options.include_extras and message.extras:
        sections.append(EXTRAS_HEADER + format_extras(message.extras))

    if options.include_timestamp:
        stamp = format_timestamp(now or datetime.now())
        sections.append(f"timestamp: {escape_markdown_v2(stamp)}")

    return "\n\n".join(sections)
