"""Spoken formatting helpers for dates, times and phone numbers."""
import re
import secrets
from datetime import date, time
from typing import Optional

CONFIRMATION_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CONFIRMATION_CODE_LENGTH = 6


def format_time_for_display(value: time) -> str:
    """19:00 -> '7 PM', 19:30 -> '7:30 PM'."""
    period = "PM" if value.hour >= 12 else "AM"
    display_hour = value.hour % 12 or 12
    if value.minute == 0:
        return f"{display_hour} {period}"
    return f"{display_hour}:{value.minute:02d} {period}"


def format_date_for_speech(value: date) -> str:
    """2025-06-01 -> 'Sunday, June 1'."""
    return f"{value.strftime('%A')}, {value.strftime('%B')} {value.day}"


def normalize_phone(phone: Optional[str], default_country: str = "1") -> Optional[str]:
    """Normalize a phone number to +<country><number>; None when it can't be parsed."""
    if not phone:
        return None
    cleaned = re.sub(r"[^\d+]", "", phone)
    if cleaned.startswith("+"):
        return cleaned if len(cleaned) > 1 else None

    if cleaned.startswith("1") and len(cleaned) == 11:
        cleaned = cleaned[1:]
    if len(cleaned) == 10:
        return f"+{default_country}{cleaned}"
    if len(cleaned) > 10:
        return f"+{cleaned}"
    return None


def generate_confirmation_code() -> str:
    """Random 6-character code without easily confused characters (0/O, 1/I)."""
    return "".join(
        secrets.choice(CONFIRMATION_CODE_ALPHABET) for _ in range(CONFIRMATION_CODE_LENGTH)
    )


def clean_text_for_speech(text: str) -> str:
    """Strip markdown markers and URLs, collapse whitespace."""
    text = text.replace("**", "").replace("*", "")
    text = re.sub(r"https?://\S+", "", text)
    return re.sub(r"\s+", " ", text).strip()
