"""
Validators for Bangladesh phone numbers
"""
import re
from typing import Optional


def clean_phone(phone: str) -> str:
    """Strip spaces, dashes and parentheses."""
    return re.sub(r'[\s\-\(\)]', '', phone or '')


def validate_bangladesh_phone(phone: str) -> bool:
    """
    Validates a Bangladesh mobile number.
    Accepted forms:
    - +8801XXXXXXXXX
    - 8801XXXXXXXXX
    - 01XXXXXXXXX (local, 11 digits)
    - 1XXXXXXXXX (local without leading zero)
    Operator prefix (digit after the 1) must be 3-9.
    """
    cleaned = clean_phone(phone)

    patterns = [
        r'^\+8801[3-9][0-9]{8}$',
        r'^8801[3-9][0-9]{8}$',
        r'^01[3-9][0-9]{8}$',
        r'^1[3-9][0-9]{8}$',
    ]

    return any(re.match(pattern, cleaned) for pattern in patterns)


def format_bangladesh_phone(phone: str) -> Optional[str]:
    """
    Normalizes to the international form +8801XXXXXXXXX.
    Returns None when the number is not a valid Bangladesh mobile.
    """
    if not phone or not validate_bangladesh_phone(phone):
        return None

    cleaned = clean_phone(phone)

    if cleaned.startswith('+880'):
        return cleaned
    elif cleaned.startswith('880'):
        return '+' + cleaned
    elif cleaned.startswith('0'):
        return '+88' + cleaned
    return '+880' + cleaned
