"""
JWT authentication helpers and decorators for the Flask API.

Tokens are issued by the user-management service; this API only verifies
them and turns their claims into a CurrentUser.
"""

from datetime import datetime, timedelta, timezone
from functools import wraps
from typing import Any, Dict, Optional

import jwt
from flask import current_app, g, jsonify, request

from maintdash.config import SECRET_KEY, TOKEN_EXPIRY_HOURS
from maintdash.logging_config import get_logger
from maintdash.permissions import load_current_user

logger = get_logger("Auth")


def _secret() -> str:
    return current_app.config.get("JWT_SECRET_KEY", SECRET_KEY)


def generate_token(claims: Dict[str, Any], secret: str = SECRET_KEY,
                   expires_in: timedelta = timedelta(hours=TOKEN_EXPIRY_HOURS)) -> str:
    """Sign *claims* (role, branch, assignedCostCodes, assignedGroups...) into a JWT."""
    now = datetime.now(timezone.utc)
    payload = dict(claims, iat=now, exp=now + expires_in)
    return jwt.encode(payload, secret, algorithm="HS256")


def verify_token(token: str, secret: str) -> Optional[Dict[str, Any]]:
    """Verify a JWT token and return the decoded payload (or None)."""
    try:
        return jwt.decode(token, secret, algorithms=["HS256"])
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        return None


def _bearer_token() -> Optional[str]:
    header = request.headers.get("Authorization", "")
    if header.startswith("Bearer "):
        return header[len("Bearer "):].strip() or None
    return request.cookies.get("auth_token")


def token_required(f):
    """Decorator that protects async endpoints with JWT authentication."""
    @wraps(f)
    async def decorated(*args, **kwargs):
        token = _bearer_token()
        if not token:
            return jsonify({"error": "Access denied. No token provided."}), 401

        payload = verify_token(token, _secret())
        if not payload:
            return jsonify({"error": "Invalid or expired token"}), 401

        try:
            g.current_user = load_current_user(payload)
        except ValueError as e:
            logger.warning(f"Rejected token claims: {e}")
            return jsonify({"error": f"Invalid token claims: {e}"}), 401

        return await f(*args, **kwargs)

    return decorated


def admin_only(f):
    """Must be applied below token_required."""
    @wraps(f)
    async def decorated(*args, **kwargs):
        if not g.current_user.is_admin:
            return jsonify({"error": "Access denied. Admin privileges required."}), 403
        return await f(*args, **kwargs)

    return decorated
