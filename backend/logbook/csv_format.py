from __future__ import annotations

from decimal import Decimal
from typing import Any, Container, Iterable

_NEEDS_QUOTING = (",", '"', "\n", "\r")


def escape_field(value: Any, *, always_quote: bool = False) -> str:
    """Render one CSV field. Numbers are never quoted."""
    if isinstance(value, bool):
        value = str(value).lower()
    elif isinstance(value, (int, float, Decimal)):
        return str(value)
    text = "" if value is None else str(value)
    if always_quote or any(char in text for char in _NEEDS_QUOTING):
        return '"' + text.replace('"', '""') + '"'
    return text


def format_row(values: Iterable[Any], *, quoted: Container[int] = ()) -> str:
    """Join one CSV line; columns whose index is in ``quoted`` are always quoted."""
    return ",".join(
        escape_field(value, always_quote=index in quoted) for index, value in enumerate(values)
    ) + "\n"
