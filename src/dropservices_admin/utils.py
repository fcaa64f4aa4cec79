import math
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Tuple

CURRENCY_SYMBOLS = {"USD": "$", "EUR": "€"}


def format_currency(amount: float, currency: str = "TND") -> str:
    """Two-decimal amount with thousands separators, e.g. ``TND 1,234.50``."""
    symbol = CURRENCY_SYMBOLS.get(currency)
    formatted = f"{abs(amount):,.2f}"
    sign = "-" if amount < 0 else ""
    if symbol:
        return f"{sign}{symbol}{formatted}"
    return f"{sign}{currency} {formatted}"


def format_date(value: Any) -> str:
    if not value:
        return ""
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return ""
    if isinstance(value, (date, datetime)):
        return f"{value:%b} {value.day}, {value.year}"
    return ""


def _matches(document: Dict[str, Any], needle: str) -> bool:
    return any(needle in str(value).lower() for value in document.values())


def search_documents(documents: Iterable[Dict[str, Any]], term: str) -> List[Dict[str, Any]]:
    """Case-insensitive substring match against every field value."""
    documents = list(documents)
    needle = (term or "").strip().lower()
    if not needle:
        return documents
    return [document for document in documents if _matches(document, needle)]


def paginate(items: List[Any], page: int, page_size: int) -> Tuple[List[Any], int]:
    """Return the requested page (1-based) and the total page count."""
    pages = math.ceil(len(items) / page_size) if page_size > 0 else 0
    start = (max(page, 1) - 1) * page_size
    return items[start:start + page_size], pages
