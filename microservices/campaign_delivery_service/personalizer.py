"""
Message Personalizer

Substitutes {{token}} placeholders in a message template with values from
the recipient's customer record.
"""

import html
import re
from typing import Callable, Dict

from .models import Customer

DEFAULT_NAME = "Customer"

_TOKEN_PATTERN = re.compile(r"\{\{\s*([a-zA-Z_][a-zA-Z0-9_]*)\s*\}\}")
_TAG_PATTERN = re.compile(r"<[^>]*>")
_BLOCK_BREAK_PATTERN = re.compile(r"<\s*(br|/p|/div|/li|/h[1-6])\s*/?\s*>", re.IGNORECASE)
_BLANK_LINES_PATTERN = re.compile(r"\n\s*\n+")


def _text(customer: Customer, key: str) -> str:
    value = customer.get(key)
    return str(value).strip() if value is not None else ""


def _full_name(customer: Customer) -> str:
    name = f"{_text(customer, 'first_name')} {_text(customer, 'last_name')}".strip()
    return name or DEFAULT_NAME


def _phone(customer: Customer) -> str:
    phone = _text(customer, "phone")
    if phone:
        return phone
    address = customer.get("default_address") or {}
    return str(address.get("phone") or "").strip() if isinstance(address, dict) else ""


TOKENS: Dict[str, Callable[[Customer], str]] = {
    "name": _full_name,
    "first_name": lambda c: _text(c, "first_name") or DEFAULT_NAME,
    "last_name": lambda c: _text(c, "last_name"),
    "email": lambda c: _text(c, "email"),
    "phone": _phone,
}


def render(template: str, customer: Customer) -> str:
    """Render a template for one recipient; unknown tokens are left as written"""
    if not template:
        return ""

    def substitute(match: "re.Match[str]") -> str:
        resolver = TOKENS.get(match.group(1).lower())
        if resolver is None:
            return match.group(0)
        return resolver(customer)

    return _TOKEN_PATTERN.sub(substitute, template)


def html_to_text(body: str) -> str:
    """Plain-text rendition of an HTML body for the e-mail text part"""
    if not body:
        return ""
    text = _BLOCK_BREAK_PATTERN.sub("\n", body)
    text = _TAG_PATTERN.sub("", text)
    text = html.unescape(text)
    text = _BLANK_LINES_PATTERN.sub("\n\n", text)
    return text.strip()


__all__ = ["DEFAULT_NAME", "TOKENS", "render", "html_to_text"]
