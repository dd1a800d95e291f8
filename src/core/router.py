"""Target selection (core domain)."""

from __future__ import annotations

from typing import Iterable, Sequence

from core.config import BotTarget, FormatOptions


def select_target(app_id: int, targets: Iterable[BotTarget], default: BotTarget) -> BotTarget:
    """Return the first target claiming ``app_id``, or ``default``.

    Targets are evaluated in declaration order, so when two of them claim the
    same id the one declared first wins.
    """

    for target in targets:
        if app_id in target.app_ids:
            return target
    return default


def effective_format_options(target: BotTarget, global_options: FormatOptions) -> FormatOptions:
    """Per-target options when present, otherwise the global ones."""

    if target.format_options is not None:
        return target.format_options
    return global_options


def find_overlapping_claims(targets: Sequence[BotTarget]) -> dict[int, list[str]]:
    """Map every app id claimed by more than one target to those target names."""

    claims: dict[int, list[str]] = {}
    for target in targets:
        for app_id in sorted(target.app_ids):
            claims.setdefault(app_id, []).append(target.name)
    return {app_id: names for app_id, names in claims.items() if len(names) > 1}
