"""
Contract item parser for Contract Desk.

Turns a pasted block of contract text into typed contract items, one item per
non-blank line. Classification uses lexical cues in a fixed priority order:

1. "unlimited" anywhere in the line -> unlimited
2. a number followed by a known unit word -> limit
3. "remote" and/or "on-site" -> location
4. anything else -> text

These are best-effort heuristics, not a grammar. Malformed lines simply fall
through to plain text.
"""

import logging
import re
import time
from typing import Iterable, Optional

from .models import ContractItem


logger = logging.getLogger(__name__)


UNLIMITED_PATTERN = re.compile(r"unlimited", re.IGNORECASE)
LIMIT_PATTERN = re.compile(r"\d+\s*(tickets|hours|days|months|users|items)", re.IGNORECASE | re.ASCII)
NUMBER_WORD_PATTERN = re.compile(r"(\d+)\s*(\w+)", re.IGNORECASE | re.ASCII)
LOCATION_PATTERN = re.compile(r"(remote|on-site)", re.IGNORECASE)


def generate_item_id(taken: set[str], index: int = 0) -> str:
    """
    Generate an item id not present in ``taken``.

    Ids never contain a hyphen, which keeps serialized contract item
    references unambiguous. The new id is added to ``taken``.

    Args:
        taken: Ids already in use; updated in place.
        index: Position of the item in its batch.

    Returns:
        A fresh item id.
    """
    base = f"item_{time.time_ns() // 1_000_000}_{index}"
    candidate = base
    suffix = 1
    while candidate in taken:
        candidate = f"{base}_{suffix}"
        suffix += 1
    taken.add(candidate)
    return candidate


def classify_line(line: str, item_id: str) -> ContractItem:
    """
    Classify one trimmed, non-blank line into a contract item.

    Args:
        line: The contract line.
        item_id: Id to assign to the produced item.

    Returns:
        ContractItem of the first matching type.
    """
    lowered = line.lower()

    if "unlimited" in lowered:
        return ContractItem(
            id=item_id,
            text=UNLIMITED_PATTERN.sub("", line).strip(),
            type="unlimited",
        )

    if LIMIT_PATTERN.search(line):
        match = NUMBER_WORD_PATTERN.search(line)
        return ContractItem(
            id=item_id,
            text=NUMBER_WORD_PATTERN.sub("", line, count=1).strip(),
            type="limit",
            value=int(match.group(1)) if match else 0,
        )

    has_remote = "remote" in lowered
    has_on_site = "on-site" in lowered
    if has_remote or has_on_site:
        if has_remote and not has_on_site:
            location = "remote"
        elif has_on_site and not has_remote:
            location = "on-site"
        else:
            location = "both"
        return ContractItem(
            id=item_id,
            text=LOCATION_PATTERN.sub("", line).strip(),
            type="location",
            location=location,
        )

    return ContractItem(id=item_id, text=line, type="text")


def parse_contract_text(
    text: str,
    existing_items: Optional[Iterable[ContractItem]] = None,
) -> list[ContractItem]:
    """
    Parse pasted contract text into contract items.

    Args:
        text: Pasted text, one candidate item per line.
        existing_items: Items already in the list being appended to; their
            ids are never reused.

    Returns:
        New items in source order (blank lines dropped).
    """
    taken = {item.id for item in existing_items or []}
    lines = [line.strip() for line in (text or "").splitlines()]
    lines = [line for line in lines if line]

    items = [
        classify_line(line, generate_item_id(taken, index))
        for index, line in enumerate(lines)
    ]

    logger.debug(
        f"Parsed {len(items)} contract items: "
        f"{sum(1 for item in items if item.is_actionable)} actionable"
    )
    return items
