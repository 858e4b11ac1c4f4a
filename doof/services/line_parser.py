"""
Bulk-add line parser.

Turns a free-text paste into ``DraftEntry`` objects. One line may hold several
``;``-separated segments, and each segment reads as::

    name, description, location #tag #another

Positional fields follow ``field_order`` (name/description/location by
default). Malformed segments are logged and dropped; parsing never raises.
"""

from __future__ import annotations

import logging
import re
from typing import Dict, List, Sequence

from doof.core.config import DEFAULT_FIELD_ORDER
from doof.models.bulk_add import DraftEntry

logger = logging.getLogger(__name__)

TAG_PATTERN = re.compile(r"(?<!\S)#([^\s,;]*)")
WHITESPACE_PATTERN = re.compile(r"\s+")


def _collapse(text: str) -> str:
    return WHITESPACE_PATTERN.sub(" ", text).strip()


def parse_segment(
    segment: str,
    *,
    line_number: int = 0,
    field_order: Sequence[str] = DEFAULT_FIELD_ORDER,
) -> DraftEntry | None:
    """Parse one segment; returns None for blank, tag-only or nameless segments."""
    raw_text = segment.strip()
    if not raw_text:
        return None

    # "#late#cheap" carries two tags
    tags = frozenset(
        part.lower() for token in TAG_PATTERN.findall(raw_text) for part in token.split("#") if part
    )
    remainder = TAG_PATTERN.sub(" ", raw_text)
    if not _collapse(remainder.replace(",", " ")):
        logger.warning("Dropping tag-only segment on line %d: %r", line_number, raw_text)
        return None

    parts = [_collapse(part) for part in remainder.split(",")]
    slots = len(field_order)
    if len(parts) > slots:
        # Overflow belongs to the last position ("Brooklyn, NY" as a location)
        overflow = [p for p in parts[slots - 1:] if p]
        parts = parts[: slots - 1] + [", ".join(overflow)]
    parts += [""] * (slots - len(parts))

    fields: Dict[str, str] = dict(zip(field_order, parts))
    if not fields["name"]:
        logger.warning("Dropping segment without a name on line %d: %r", line_number, raw_text)
        return None

    return DraftEntry(
        raw_text=raw_text,
        name=fields["name"],
        description_hint=fields["description_hint"],
        location_hint=fields["location_hint"],
        tags=tags,
        line_number=line_number,
    )


def parse(raw_input: str, *, field_order: Sequence[str] = DEFAULT_FIELD_ORDER) -> List[DraftEntry]:
    if not raw_input or not raw_input.strip():
        return []

    entries: List[DraftEntry] = []
    dropped = 0
    for line_number, line in enumerate(raw_input.splitlines(), start=1):
        if not line.strip():
            continue
        for segment in line.split(";"):
            if not segment.strip():
                continue
            entry = parse_segment(segment, line_number=line_number, field_order=field_order)
            if entry is None:
                dropped += 1
                continue
            entries.append(entry)

    logger.info("Parsed %d bulk-add entries (%d segments dropped)", len(entries), dropped)
    return entries


def find_duplicates(entries: Sequence[DraftEntry]) -> Dict[int, int]:
    """Map the index of each repeated entry to the index of its first occurrence.

    Names compare case-insensitively. Duplicates are a warning for the caller;
    they are still resolved and submitted.
    """
    seen: Dict[str, int] = {}
    duplicates: Dict[int, int] = {}
    for index, entry in enumerate(entries):
        key = entry.name.casefold()
        if key in seen:
            duplicates[index] = seen[key]
        else:
            seen[key] = index
    if duplicates:
        logger.warning("Found %d duplicate entries in bulk-add input", len(duplicates))
    return duplicates
