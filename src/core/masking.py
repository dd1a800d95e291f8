"""Helpers for keeping secrets out of logs."""

from __future__ import annotations


def mask_token(token: str) -> str:
    """Return a printable hint of ``token`` that does not reveal it."""

    if not token:
        return ""
    if len(token) <= 8:
        return "***"
    return f"{token[:4]}...{token[-4:]}"


def redact(text: str, secrets: list[str]) -> str:
    """Replace every occurrence of each secret with ``***``."""

    # Longest first so a secret that contains another is removed whole.
    for secret in sorted((s for s in secrets if s), key=len, reverse=True):
        text = text.replace(secret, "***")
    return text
