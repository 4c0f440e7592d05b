"""
Fix User Claims by Email (recovery script)

Use when a user's custom claims carry restaurantId/officeId/agentId but no
tenantId, which breaks billing and tenant lookups. Copies the vertical id into
tenantId; all other claims stay as they are. Safe to run repeatedly.

The user has to sign out and back in (or refresh their ID token) afterwards.

Usage (from backend/):
  python -m scripts.fix_user_claims owner@example.com
  python -m scripts.fix_user_claims --email owner@example.com --dry-run
"""

import argparse
import json
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from firebase_admin import auth as firebase_auth
from database import get_db_context
from services.claims_service import claims_service, ClaimsError
import logging

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def fix_user_claims(email: str, dry_run: bool = False) -> bool:
    """Returns True when claims are (now) correct, False when they cannot be fixed."""
    email = email.strip()
    if not email:
        logger.error("Email is required")
        return False

    try:
        result = claims_service.fix_claims_by_email(email, dry_run=dry_run)
    except firebase_auth.UserNotFoundError:
        logger.warning("No user found with email: %s", email)
        return False
    except ClaimsError as e:
        logger.error("%s. Current claims: %s", e, json.dumps(e.claims))
        return False

    logger.info("Current claims: %s", json.dumps(result.old_claims, indent=2))
    if not result.needs_update:
        logger.info("User already has tenantId set. No fix needed.")
        return True

    logger.info("Updated claims: %s", json.dumps(result.new_claims, indent=2))
    if not dry_run:
        logger.info("Claims updated. The user needs to log out and log back in.")
    return True


def main():
    parser = argparse.ArgumentParser(description="Add a missing tenantId to a user's custom claims")
    parser.add_argument("email", nargs="?", help="User email")
    parser.add_argument("--email", dest="email_flag", help="User email (alternative)")
    parser.add_argument("--dry-run", action="store_true", help="Show the new claims without saving them")
    args = parser.parse_args()
    email = args.email or args.email_flag
    if not email:
        parser.error("Provide email as positional argument or --email")
        return 1

    with get_db_context():
        ok = fix_user_claims(email, dry_run=args.dry_run)
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
