from fastapi import Request, HTTPException, status
from firebase_admin import auth as firebase_auth
from typing import Optional
import logging
from database import database
from models import UserRole, TENANT_CLAIM_KEYS

logger = logging.getLogger(__name__)

USER_CLAIM_KEYS = ("role", "restaurantId", "officeId", "agentId", "tenantId", "type")


def _extract_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization") or ""
    if not auth_header.startswith("Bearer "):
        return None
    token = auth_header[len("Bearer "):].strip()
    return token or None


def get_current_user(request: Request) -> dict:
    """Verify the Firebase ID token and return the decoded claims."""
    token = _extract_token(request)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authentication token"
        )

    try:
        decoded = firebase_auth.verify_id_token(token, app=database.get_app())
    except firebase_auth.ExpiredIdTokenError:
        logger.warning("Auth error: token expired path=%s", request.url.path)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expired")
    except firebase_auth.RevokedIdTokenError:
        logger.warning("Auth error: token revoked path=%s", request.url.path)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token revoked")
    except ValueError:
        logger.warning("Auth error: malformed token path=%s", request.url.path)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token format")
    except Exception as e:
        logger.warning("Auth error: %s path=%s", e, request.url.path)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication token"
        )

    user = dict(decoded)
    for key in USER_CLAIM_KEYS:
        user.setdefault(key, None)
    logger.debug(
        "Auth token decoded uid=%s role=%s tenantId=%s type=%s",
        user.get("uid"), user.get("role"), user.get("tenantId"), user.get("type")
    )
    return user


def require_auth(request: Request) -> dict:
    """Require valid authentication."""
    return get_current_user(request)


def effective_tenant_id(user: dict) -> Optional[str]:
    """tenantId, falling back to the per-vertical id for older accounts."""
    for key in TENANT_CLAIM_KEYS:
        if user.get(key):
            return user[key]
    return None


def restaurant_route_guard(request: Request) -> tuple:
    """Guard for restaurant portal routes. Returns (user, restaurant_id)."""
    user = require_auth(request)
    restaurant_id = user.get("restaurantId")
    if not restaurant_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Restaurant ID required"
        )
    return user, restaurant_id


def office_route_guard(request: Request) -> tuple:
    """Guard for voice office routes. Returns (user, office_id)."""
    user = require_auth(request)
    office_id = user.get("officeId")
    if not office_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Office ID required"
        )
    return user, office_id


def agent_route_guard(request: Request) -> tuple:
    """Guard for real-estate agent routes. Returns (user, agent_id)."""
    user = require_auth(request)
    agent_id = user.get("agentId")
    if not agent_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Agent ID required"
        )
    return user, agent_id


def super_admin_route_guard(request: Request) -> dict:
    """Guard for cross-tenant administration."""
    user = require_auth(request)
    if user.get("role") != UserRole.SUPER_ADMIN.value:
        logger.warning("Super admin access denied uid=%s path=%s", user.get("uid"), request.url.path)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Super admin access required"
        )
    return user
