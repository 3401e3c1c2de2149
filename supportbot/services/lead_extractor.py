"""
services/lead_extractor.py
--------------------------
Pure, deterministic extraction of lead signals from a chat message.

No I/O and no model calls: the same text always yields the same
LeadSignals, so the extractor can run inline on every chat turn.
"""

import re
from dataclasses import dataclass, field
from typing import List, Optional

INTENT_VOCABULARY = (
    "pricing",
    "price",
    "plan",
    "plans",
    "buy",
    "purchase",
    "trial",
    "subscribe",
    "integration",
    "support",
    "cost",
    "charge",
    "billing",
    "quote",
    "demo",
)
MAX_INTENT_KEYWORDS = 8
MIN_PHONE_DIGITS = 10

FOLLOW_UP_CUES = ("follow up", "contact", "reach out", "get back", "share your")
CONTACT_CHANNELS = ("email", "phone")

EMAIL_RE = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")

# Tried in order; the first pattern whose first match has enough digits wins
PHONE_PATTERNS = (
    re.compile(
        r"\+?\(?\d{1,4}\)?[-.\s]?\(?\d{1,4}\)?[-.\s]?\d{1,4}[-.\s]?\d{1,4}[-.\s]?\d{1,9}"
    ),
    re.compile(r"\(\d{3}\)\s?\d{3}-?\d{4}"),
    re.compile(r"\d{3}-?\d{3}-?\d{4}"),
)


@dataclass(frozen=True)
class LeadSignals:
    email: Optional[str] = None
    phone: Optional[str] = None
    intent_keywords: List[str] = field(default_factory=list)
    follow_up_request: bool = False

    @property
    def has_contact(self) -> bool:
        return bool(self.email or self.phone)


def extract_email(text: str) -> Optional[str]:
    match = EMAIL_RE.search(text or "")
    return match.group(0) if match else None


def extract_phone(text: str) -> Optional[str]:
    for pattern in PHONE_PATTERNS:
        match = pattern.search(text or "")
        if match and sum(ch.isdigit() for ch in match.group(0)) >= MIN_PHONE_DIGITS:
            return match.group(0).strip()
    return None


def extract_intent_keywords(text: str) -> List[str]:
    lowered = (text or "").lower()
    return [kw for kw in INTENT_VOCABULARY if kw in lowered][:MAX_INTENT_KEYWORDS]


def detect_follow_up_request(text: str) -> bool:
    lowered = (text or "").lower()
    has_cue = any(cue in lowered for cue in FOLLOW_UP_CUES)
    return has_cue and any(channel in lowered for channel in CONTACT_CHANNELS)


def extract(text: str) -> LeadSignals:
    return LeadSignals(
        email=extract_email(text),
        phone=extract_phone(text),
        intent_keywords=extract_intent_keywords(text),
        follow_up_request=detect_follow_up_request(text),
    )
