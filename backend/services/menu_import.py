"""Menu CSV import.

Expected columns: name, price, category (required) and description,
isAvailable, tags (optional, tags are semicolon separated). Header names are
case-insensitive. Rows without a name, price or category are dropped.
"""
import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("name", "price", "category")
TRUTHY_VALUES = ("true", "yes", "1")


class MenuImportError(ValueError):
    pass


@dataclass
class MenuImportResult:
    success_count: int = 0
    error_count: int = 0
    errors: List[str] = field(default_factory=list)
    created: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def message(self) -> str:
        if not self.success_count:
            return f"Failed to import all items. Errors: {'; '.join(self.errors)}"
        plural = "s" if self.success_count != 1 else ""
        failed = f" ({self.error_count} failed)" if self.error_count else ""
        return f"Successfully imported {self.success_count} menu item{plural}{failed}"


def parse_csv_line(line: str) -> List[str]:
    """Split one CSV line. Quotes group commas; `""` inside quotes is a literal quote."""
    result = []
    current = []
    in_quotes = False
    i = 0
    while i < len(line):
        char = line[i]
        if char == '"':
            if in_quotes and i + 1 < len(line) and line[i + 1] == '"':
                current.append('"')
                i += 1
            else:
                in_quotes = not in_quotes
        elif char == "," and not in_quotes:
            result.append("".join(current).strip())
            current = []
        else:
            current.append(char)
        i += 1
    result.append("".join(current).strip())
    return result


# Leading number of the string, like parseFloat: "9.99 USD" -> 9.99.
_LEADING_NUMBER = re.compile(r"^\s*[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?")


def _parse_price(value: str) -> float:
    match = _LEADING_NUMBER.match(value or "")
    if not match:
        return 0.0
    price = float(match.group(0))
    return price if math.isfinite(price) else 0.0


def parse_menu_csv(text: str) -> List[Dict[str, Any]]:
    lines = [line for line in text.splitlines() if line.strip()]
    if len(lines) < 2:
        raise MenuImportError("CSV file must have at least a header row and one data row")

    headers = [h.strip().lower() for h in parse_csv_line(lines[0])]
    missing = [h for h in REQUIRED_COLUMNS if h not in headers]
    if missing:
        raise MenuImportError(f"Missing required columns: {', '.join(missing)}")

    items = []
    for line_number, line in enumerate(lines[1:], start=2):
        values = parse_csv_line(line)
        if len(values) < len(headers):
            logger.debug("Skipping incomplete CSV row %s", line_number)
            continue

        item: Dict[str, Any] = {}
        for header, value in zip(headers, values):
            if header == "name":
                item["name"] = value
            elif header == "description":
                item["description"] = value
            elif header == "price":
                item["price"] = _parse_price(value)
            elif header == "category":
                item["category"] = value
            elif header in ("isavailable", "available"):
                item["isAvailable"] = value.lower() in TRUTHY_VALUES
            elif header == "tags":
                item["tags"] = [t.strip() for t in value.split(";") if t.strip()] if value else []

        if not (item.get("name") and item.get("price") and item.get("category")):
            continue

        item.setdefault("isAvailable", True)
        if not item.get("description"):
            item["description"] = ""
        item.setdefault("tags", [])
        items.append(item)

    return items


def import_menu_items(
    items: List[Dict[str, Any]],
    create_item: Callable[[Dict[str, Any]], Dict[str, Any]],
) -> MenuImportResult:
    """Create each parsed item; one failure does not stop the rest."""
    if not items:
        raise MenuImportError("No valid menu items found in CSV file")

    result = MenuImportResult()
    for item in items:
        try:
            created = create_item(item)
        except Exception as e:
            result.error_count += 1
            result.errors.append(f"{item.get('name')}: {str(e) or 'Failed to create'}")
            logger.warning("Menu import failed for %s: %s", item.get("name"), e)
            continue
        result.success_count += 1
        result.created.append(created)

    logger.info(
        "Menu import finished success=%s failed=%s", result.success_count, result.error_count
    )
    return result
