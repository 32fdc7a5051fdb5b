"""Grouping and ordering of normalized vendor listings.

Listings of the same physical part are grouped but never merged: every
vendor's price and availability survives. Ordering only depends on record
contents and input order, never on which vendor answered first.
"""

import re
from difflib import SequenceMatcher
from typing import Iterable

from .config import DEDUP_SIMILARITY_THRESHOLD
from .models import PartGroup, PartRecord

_MPN_STRIP_RE = re.compile(r"[^A-Z0-9]")
_WORD_RE = re.compile(r"[a-z0-9]+(?:\.[0-9]+)?")


def normalize_mpn(mpn: str) -> str:
    """Uppercase and drop separators: 'lm358-p ' and 'LM358P' compare equal."""
    return _MPN_STRIP_RE.sub("", (mpn or "").upper())


def normalize_description(description: str) -> str:
    return " ".join(_WORD_RE.findall((description or "").lower()))


def description_similarity(a: str, b: str) -> float:
    """Similarity in [0, 1] of two descriptions: best of token overlap and sequence ratio."""
    na, nb = normalize_description(a), normalize_description(b)
    if not na or not nb:
        return 1.0  # Missing description never splits a group
    tokens_a, tokens_b = set(na.split()), set(nb.split())
    jaccard = len(tokens_a & tokens_b) / len(tokens_a | tokens_b)
    return max(jaccard, SequenceMatcher(None, na, nb).ratio())


def relevance(record: PartRecord, query_text: str) -> float:
    """How well a record matches the query, in [0, 1]."""
    query_mpn = normalize_mpn(query_text)
    mpn = normalize_mpn(record.manufacturer_part_number)
    if query_mpn and mpn:
        if mpn == query_mpn:
            return 1.0
        if mpn.startswith(query_mpn):
            return 0.8
        if query_mpn in mpn:
            return 0.6

    terms = _WORD_RE.findall((query_text or "").lower())
    if not terms:
        return 0.0
    haystack = " ".join((
        record.manufacturer_part_number,
        record.vendor_part_number,
        record.manufacturer,
        record.description,
        record.package_type or "",
    )).lower()
    matched = sum(1 for term in terms if term in haystack)
    return 0.5 * matched / len(terms)


def _price_key(record: PartRecord) -> tuple:
    # Unknown prices sort after every known price
    return (record.unit_price is None, record.unit_price or 0.0)


class _Group:
    __slots__ = ("mpn_key", "description", "records", "first_seen")

    def __init__(self, mpn_key: str, record: PartRecord, first_seen: int):
        self.mpn_key = mpn_key
        self.description = record.description
        self.records = [record]
        self.first_seen = first_seen

    def accepts(self, mpn_key: str, record: PartRecord, threshold: float) -> bool:
        if not mpn_key or mpn_key != self.mpn_key:
            return False
        return description_similarity(self.description, record.description) >= threshold

    def add(self, record: PartRecord) -> None:
        self.records.append(record)
        if not self.description:
            self.description = record.description


def group_records(
    records: Iterable[PartRecord],
    query_text: str,
    threshold: float = DEDUP_SIMILARITY_THRESHOLD,
) -> list[PartGroup]:
    """Group listings of the same part and order groups and their members.

    Groups order by descending relevance, then cheapest member, then MPN,
    then first appearance. Members order by ascending unit price (unknown
    last), then vendor id and vendor part number.
    """
    groups: list[_Group] = []
    by_mpn: dict[str, list[_Group]] = {}

    for index, record in enumerate(records):
        mpn_key = normalize_mpn(record.manufacturer_part_number)
        target = None
        for candidate in by_mpn.get(mpn_key, ()) if mpn_key else ():
            if candidate.accepts(mpn_key, record, threshold):
                target = candidate
                break
        if target is None:
            target = _Group(mpn_key, record, index)
            groups.append(target)
            if mpn_key:
                by_mpn.setdefault(mpn_key, []).append(target)
        else:
            target.add(record)

    result = []
    for group in groups:
        members = sorted(
            group.records,
            key=lambda r: (*_price_key(r), r.vendor_id, r.vendor_part_number),
        )
        score = max(relevance(r, query_text) for r in members)
        result.append((group, score, members))

    result.sort(key=lambda item: (
        -item[1],
        *_price_key(item[2][0]),
        item[0].mpn_key,
        item[0].first_seen,
    ))

    return [
        PartGroup(
            manufacturer_part_number=members[0].manufacturer_part_number,
            relevance=score,
            parts=tuple(members),
        )
        for _, score, members in result
    ]
