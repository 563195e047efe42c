from __future__ import annotations

import hashlib
import re

IDENTITY_MARKER = "gigsync-id:"
IDENTITY_LENGTH = 24
IDENTITY_PATTERN = re.compile(r"(?:^|\n\s*\n)" + re.escape(IDENTITY_MARKER) + r"(\w{16,64})\s*$")
_PUNCTUATION = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")


def normalize_token(value: str) -> str:
    lowered = str(value or "").lower()
    stripped = _PUNCTUATION.sub("", lowered)
    return _WHITESPACE.sub(" ", stripped).strip()


def fingerprint(day_key: str, artist: str, venue: str) -> str:
    """Stable event identity for a (day, artist, venue) triple.

    Rating, notes and ticket never take part, so editing them keeps the
    identity (and therefore the calendar event) in place. Two rows that agree
    on all three normalized fields share one identity.
    """
    seed = f"{day_key}|{normalize_token(artist)}|{normalize_token(venue)}"
    return hashlib.sha256(seed.encode("utf-8")).hexdigest()[:IDENTITY_LENGTH]


def extract_identity(description: str) -> str:
    if not description:
        return ""
    match = IDENTITY_PATTERN.search(description.rstrip())
    if not match:
        return ""
    return match.group(1)


def strip_identity(description: str) -> str:
    if not description:
        return ""
    text = description.rstrip()
    match = IDENTITY_PATTERN.search(text)
    if not match:
        return description.strip()
    return text[: match.start()].strip()


def embed_identity(description: str, identity: str) -> str:
    visible = strip_identity(description)
    marker = f"{IDENTITY_MARKER}{identity}"
    if not visible:
        return marker
    return f"{visible}\n\n{marker}"
