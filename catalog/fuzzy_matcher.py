from __future__ import annotations

import math
import re
from typing import Iterable, Sequence

from core.models import Product

_WHITESPACE = re.compile(r"\s+")
MIN_SUBSTRING_LENGTH = 2


def levenshtein(a: str, b: str) -> int:
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)
    if len(a) < len(b):
        a, b = b, a

    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def max_typo_distance(length: int) -> int:
    """Edits tolerated against a candidate of ``length`` characters.

    0 below 4 characters, 1 up to 7, 2 from 8 on.
    """
    if length < 4:
        return 0
    return min(2, int(math.log2(length)) - 1)


def normalize_query(text: str | None) -> str:
    return _WHITESPACE.sub(" ", str(text or "")).strip().lower()


def search(products: Sequence[Product], query: str | None) -> Product | None:
    """Resolve a free-text query to one product, or None.

    Order: exact id, exact name, substring of name or id, then the closest
    edit distance within the length-scaled tolerance. Ties keep catalog order.
    """
    needle = normalize_query(query)
    if not needle or not products:
        return None

    for product in products:
        if product.id == needle or product.id == str(query or "").strip():
            return product

    for product in products:
        if normalize_query(product.name) == needle:
            return product

    if len(needle) >= MIN_SUBSTRING_LENGTH:
        for product in products:
            if needle in normalize_query(product.name) or needle in product.id.lower():
                return product

    best: Product | None = None
    best_distance: int | None = None
    for product in products:
        for candidate in _candidates(product):
            if abs(len(candidate) - len(needle)) > 2:
                continue
            distance = levenshtein(needle, candidate)
            if distance > max_typo_distance(len(candidate)):
                continue
            if best_distance is None or distance < best_distance:
                best = product
                best_distance = distance
    return best


def _candidates(product: Product) -> Iterable[str]:
    name = normalize_query(product.name)
    seen: set[str] = set()
    for candidate in (product.id.lower(), name, *name.split(" ")):
        if candidate and candidate not in seen:
            seen.add(candidate)
            yield candidate
