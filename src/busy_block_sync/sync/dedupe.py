"""
Duplicate managed-block detection.
"""

from dataclasses import dataclass
from dataclasses import field
from typing import Callable

from ..models import CalendarEvent
from .keys import MatchKey


@dataclass
class DedupeResult:
    kept: dict[MatchKey, CalendarEvent] = field(default_factory=dict)
    removed: list[CalendarEvent] = field(default_factory=list)


def dedupe(
    blocks: list[CalendarEvent],
    key_fn: Callable[[CalendarEvent], MatchKey],
) -> DedupeResult:
    """Keep the first block seen per key; every later block with that key is removed.

    Order matters: blocks must be passed in the order the gateway returned
    them.  ``kept`` preserves that order.
    """
    result = DedupeResult()
    for block in blocks:
        key = key_fn(block)
        if key in result.kept:
            result.removed.append(block)
        else:
            result.kept[key] = block
    return result
