"""
Serialization decision and serial/batch number generation.

Every path that receives stock (manual batch receipt, spreadsheet import)
asks ``requires_serialization`` whether the units must be tracked one by
one, and mints their identifiers with ``generate_serials``.
"""

import re
import secrets
from datetime import date, datetime
from typing import Optional

from mdrrmo_api.models.category import Category, CategoryType
from mdrrmo_api.models.inventory import InventoryItem

RETURNABLE_CATEGORY_TYPES = frozenset({
    CategoryType.EQUIPMENT,
    CategoryType.VEHICLES,
    CategoryType.COMMUNICATION_DEVICES,
    CategoryType.SUPPLIES,
})

RETURNABLE_KEYWORDS = (
    "stretcher",
    "defibrillator",
    "aed",
    "ambulance",
    "radio",
    "generator",
    "kit",
    "helmet",
    "harness",
    "rope",
    "life vest",
    "life jacket",
    "boat",
    "chainsaw",
    "flashlight",
    "megaphone",
    "tent",
    "ladder",
    "oxygen tank",
    "spine board",
)

_KEYWORD_PATTERN = re.compile(
    r"\b(" + "|".join(re.escape(k) for k in RETURNABLE_KEYWORDS) + r")s?\b",
    re.IGNORECASE,
)


def matches_returnable_keyword(name: Optional[str]) -> bool:
    return bool(name) and _KEYWORD_PATTERN.search(name) is not None


def requires_serialization(item: InventoryItem, category: Optional[Category]) -> bool:
    """Decide whether received units of ``item`` must be individually tracked.

    Precedence: an explicit ``is_returnable`` flag (true or false) wins;
    otherwise the category type decides; otherwise the item name is matched
    against the returnable keyword lexicon.
    """
    if item.is_returnable is not None:
        return bool(item.is_returnable)
    if category is not None and category.type in RETURNABLE_CATEGORY_TYPES:
        return True
    return matches_returnable_keyword(item.name)


def category_code_for(category: Optional[Category]) -> str:
    """Three-letter upper-case code from the category name, padded with X."""
    letters = re.sub(r"[^A-Za-z]", "", category.name if category else "")
    return letters[:3].upper().ljust(3, "X")


def generate_serials(
    batch_number: str,
    quantity: int,
    category_code: str,
    on: Optional[date] = None,
) -> list[str]:
    """Produce ``quantity`` serials ``{CAT}-{batch}-{YYMMDD}-{seq}``.

    Sequence numbers are 1-based and zero-padded to three digits, or wider
    when the batch is large enough to need it, so serials sort in order.
    """
    if quantity <= 0:
        return []
    code = (category_code or "")[:3].upper().ljust(3, "X")
    stamp = (on or datetime.utcnow().date()).strftime("%y%m%d")
    width = max(3, len(str(quantity)))
    return [f"{code}-{batch_number}-{stamp}-{seq:0{width}d}" for seq in range(1, quantity + 1)]


def generate_batch_number(item_name: str, now: Optional[datetime] = None) -> str:
    """``{PREFIX}-{YYMMDDHHMMSS}-{RAND}`` with a random suffix against same-second collisions."""
    prefix = re.sub(r"[^A-Za-z0-9]", "", item_name or "")[:3].upper().ljust(3, "X")
    stamp = (now or datetime.utcnow()).strftime("%y%m%d%H%M%S")
    return f"{prefix}-{stamp}-{secrets.token_hex(2).upper()}"
