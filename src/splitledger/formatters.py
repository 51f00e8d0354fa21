"""Human-readable money formatting.

Display only: amounts are never parsed back from these strings and no
arithmetic happens here.
"""

from __future__ import annotations

from decimal import Decimal

CURRENCY_SYMBOLS: dict[str, str] = {
    "AUD": "A$",
    "BRL": "R$",
    "CAD": "C$",
    "CHF": "CHF",
    "CNY": "¥",
    "EUR": "€",
    "GBP": "£",
    "ILS": "₪",
    "INR": "₹",
    "JPY": "¥",
    "KRW": "₩",
    "MXN": "MX$",
    "NGN": "₦",
    "NZD": "NZ$",
    "PHP": "₱",
    "RUB": "₽",
    "SGD": "S$",
    "THB": "฿",
    "TRY": "₺",
    "USD": "$",
    "VND": "₫",
    "ZAR": "R",
}


def symbol_for(currency_code: str) -> str:
    """Return the display symbol for *currency_code*.

    Unknown codes are returned unchanged (upper-cased), so the caller can
    always print *something* next to an amount.
    """
    code = (currency_code or "").strip().upper()
    return CURRENCY_SYMBOLS.get(code, code)


def format_money(amount: Decimal, currency_code: str) -> str:
    """Format *amount* for display, e.g. ``$1,234.50`` or ``-€12.00``."""
    symbol = symbol_for(currency_code)
    sign = "-" if amount < 0 else ""
    return f"{sign}{symbol}{abs(amount):,.2f}"
