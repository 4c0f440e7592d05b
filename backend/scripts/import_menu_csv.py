"""
Import Menu CSV through the portal API

Parses a menu CSV locally and creates each item with POST /menu, the same
way the portal's import dialog does. Rows without name, price or category
are skipped; one failed item does not stop the rest.

Columns: name, price, category (required); description, isAvailable, tags
(optional, tags separated by semicolons).

Usage (from backend/):
  PORTAL_ID_TOKEN=... python -m scripts.import_menu_csv menu.csv
  python -m scripts.import_menu_csv menu.csv --token <id-token> --base-url http://localhost:8001
"""

import argparse
import os
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from services.menu_import import parse_menu_csv, import_menu_items, MenuImportError
from utils.portal_client import PortalClient, PortalAPIError
import logging

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def import_file(path: Path, client: PortalClient, dry_run: bool = False) -> bool:
    try:
        text = path.read_text(encoding="utf-8-sig")
    except UnicodeDecodeError:
        logger.error("CSV file must be UTF-8 encoded: %s", path)
        return False
    try:
        items = parse_menu_csv(text)
    except MenuImportError as e:
        logger.error("Invalid CSV %s: %s", path, e)
        return False

    logger.info("Parsed %s menu item(s) from %s", len(items), path)
    if dry_run:
        for item in items:
            logger.info("  %s (%s) %.2f", item["name"], item["category"], item["price"])
        return bool(items)

    try:
        result = import_menu_items(items, client.create_menu_item)
    except MenuImportError as e:
        logger.error("%s", e)
        return False

    for error in result.errors[:5]:
        logger.warning("Import error: %s", error)
    if result.success_count:
        logger.info(result.message)
    else:
        logger.error(result.message)
    return result.success_count > 0


def main():
    parser = argparse.ArgumentParser(description="Import menu items from a CSV file")
    parser.add_argument("csv_file", help="Path to the CSV file")
    parser.add_argument("--token", help="Firebase ID token (default: $PORTAL_ID_TOKEN)")
    parser.add_argument("--base-url", help="API base URL (default: $PORTAL_API_BASE_URL)")
    parser.add_argument("--dry-run", action="store_true", help="Parse and list items without creating them")
    args = parser.parse_args()

    path = Path(args.csv_file)
    if path.suffix.lower() != ".csv" or not path.exists():
        parser.error("Please select an existing .csv file")
        return 1

    token = args.token or os.getenv("PORTAL_ID_TOKEN")
    if not token and not args.dry_run:
        parser.error("An ID token is required (--token or PORTAL_ID_TOKEN)")
        return 1

    client = PortalClient(base_url=args.base_url, token_provider=lambda: token)
    try:
        ok = import_file(path, client, dry_run=args.dry_run)
    except PortalAPIError as e:
        logger.error("API error: %s", e)
        ok = False
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
