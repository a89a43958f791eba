# core/utils.py
"""
Small string, money and time helpers shared by controllers and services
"""

import re
import secrets
import string
import time
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

_ALPHABET = string.ascii_uppercase + string.digits


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def sanitize_string(value: Optional[str]) -> Optional[str]:
    """Trim and collapse runs of whitespace"""
    if value is None:
        return None
    return re.sub(r'\s+', ' ', value.strip())


def generate_slug(text: str) -> str:
    slug = text.lower().strip()
    slug = re.sub(r'[^\w\s-]', '', slug)
    slug = re.sub(r'[\s_-]+', '-', slug)
    return slug.strip('-')


def _random_token(length: int = 6) -> str:
    return ''.join(secrets.choice(_ALPHABET) for _ in range(length))


def _base36(number: int) -> str:
    digits = string.digits + string.ascii_uppercase
    if number == 0:
        return '0'
    out = []
    while number:
        number, remainder = divmod(number, 36)
        out.append(digits[remainder])
    return ''.join(reversed(out))


def generate_order_number() -> str:
    """ORD-<base36 millis>-<random>"""
    return f'ORD-{_base36(int(time.time() * 1000))}-{_random_token()}'


def generate_sku(title: str, category_name: str) -> str:
    title_part = re.sub(r'\s', '', title)[:3].upper()
    category_part = re.sub(r'\s', '', category_name)[:2].upper()
    return f'{title_part}{category_part}-{_random_token()}'


def generate_file_name(original_name: str, prefix: Optional[str] = None) -> str:
    extension = get_file_extension(original_name)
    prefix_part = f'{prefix}_' if prefix else ''
    return f'{prefix_part}{int(time.time() * 1000)}_{_random_token().lower()}.{extension}'


def get_file_extension(filename: str) -> str:
    if '.' not in filename:
        return ''
    return filename.rsplit('.', 1)[1].lower()


def to_money(value) -> Decimal:
    return Decimal(str(value)).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)


def money_to_float(value) -> Optional[float]:
    if value is None:
        return None
    return float(to_money(value))
