"""
utils/recipient_validator.py
────────────────────────────
Structural checks run by the delivery service before any gateway request.

  1. Email – trimmed, lower-cased, must contain "@" and match a syntax regex
  2. Phone – punctuation stripped, North American shorthand expanded,
             must end up in E.164 form (+ and 8-15 digits)

No network lookups happen here; a send to a syntactically valid but dead
address is the gateway's problem and is recorded from its response.
"""

import re
import logging
from typing import Optional

logger = logging.getLogger("automation_service")

# ── Regex ──────────────────────────────────────────────────────────────────────
_EMAIL_REGEX = re.compile(
    r'^[A-Za-z0-9._%+\-]+@[A-Za-z0-9.\-]+\.[A-Za-z]{2,}$'
)
_E164_REGEX = re.compile(r'^\+[1-9]\d{7,14}$')
_PHONE_PUNCTUATION = re.compile(r'[\s\-().]')


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def is_valid_email(email: Optional[str]) -> bool:
    email = normalize_email(email)
    if "@" not in email:
        return False
    return bool(_EMAIL_REGEX.match(email))


def normalize_phone(phone: Optional[str]) -> Optional[str]:
    """
    Returns the E.164 form of `phone`, or None when it cannot be one.

    10 digits are read as a North American number (+1 prefixed); 11 digits
    starting with 1 just gain the "+".
    """
    if not phone:
        return None
    cleaned = _PHONE_PUNCTUATION.sub("", phone.strip())
    if cleaned.startswith("+"):
        candidate = cleaned
    elif not cleaned.isdigit():
        return None
    elif len(cleaned) == 10:
        candidate = f"+1{cleaned}"
    elif len(cleaned) == 11 and cleaned.startswith("1"):
        candidate = f"+{cleaned}"
    else:
        candidate = f"+{cleaned}"

    if not _E164_REGEX.match(candidate):
        logger.debug(f"Phone '{phone}' is not a valid E.164 number")
        return None
    return candidate


def is_valid_phone(phone: Optional[str]) -> bool:
    return normalize_phone(phone) is not None
