# auth.py — Bearer token verification for the board assistant
# Tokens are issued by the external identity provider; this module only
# verifies them (shared HS256 secret) and resolves the caller's user id.
# Features:
# - JWT verification with expiry and optional audience
# - Optional caller resolution for public endpoints
# - Token minting helper for local development and the test-suite

import os
import uuid
import secrets
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any

from jose import jwt, JWTError, ExpiredSignatureError
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel

from errors import Unauthenticated
from logging_system import get_current_context

logger = logging.getLogger("board-assistant.auth")

# ============================================================
# CONFIGURATION
# ============================================================

SECRET_KEY = os.getenv("JWT_SECRET_KEY", "")
if not SECRET_KEY or SECRET_KEY == "change-this-to-a-secure-random-key-in-production":
    SECRET_KEY = secrets.token_urlsafe(64)
    logger.warning(
        "⚠️  JWT_SECRET_KEY not set or insecure. Generated ephemeral key. "
        "Set JWT_SECRET_KEY to the identity provider's signing secret!"
    )

ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
AUDIENCE = os.getenv("JWT_AUDIENCE") or None
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "30"))

security = HTTPBearer(auto_error=False)


# ============================================================
# PYDANTIC SCHEMAS
# ============================================================

class CurrentUser(BaseModel):
    id: str
    email: Optional[str] = None


# ============================================================
# AUTH SERVICE
# ============================================================

class AuthService:
    """Verifies identity-provider tokens"""

    @staticmethod
    def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
        to_encode = data.copy()
        now = datetime.now(timezone.utc)
        to_encode.update({
            "exp": now + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)),
            "iat": now,
            "jti": str(uuid.uuid4()),
        })
        if AUDIENCE and "aud" not in to_encode:
            to_encode["aud"] = AUDIENCE
        return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)

    @staticmethod
    def verify_token(token: str) -> Dict[str, Any]:
        options = {"verify_aud": AUDIENCE is not None}
        try:
            return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM], audience=AUDIENCE, options=options)
        except ExpiredSignatureError:
            raise Unauthenticated("Token expired")
        except JWTError:
            raise Unauthenticated("Invalid token")


# ============================================================
# FASTAPI DEPENDENCIES
# ============================================================

async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> CurrentUser:
    if credentials is None or not credentials.credentials:
        raise Unauthenticated()

    payload = AuthService.verify_token(credentials.credentials)
    user_id = payload.get("sub")
    if not user_id:
        raise Unauthenticated("Invalid token")

    user = CurrentUser(id=str(user_id), email=payload.get("email"))
    request.state.user_id = user.id
    context = get_current_context()
    if context is not None:
        context.user_id = user.id
    return user
