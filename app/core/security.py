from __future__ import annotations

import logging
import uuid
from jose import jwt
from jose.exceptions import JWTError, ExpiredSignatureError
from fastapi import HTTPException, Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from typing import Any, Dict, Optional
from app.core.config import settings

logger = logging.getLogger(__name__)
bearer = HTTPBearer(auto_error=False)

DEV_USER_ID = "123e4567-e89b-12d3-a456-426614174000"
DEV_BYPASS_TOKENS = {"dev-bypass", "test", "dev"}


def verify_supabase_token(token: str) -> Dict[str, Any]:
    """
    Verify a Supabase access token and return the caller identity.

    The check-in tables key rows by UUID, so a `sub` that is not a UUID
    is rejected here rather than failing later in the database.
    """
    try:
        if settings.SUPABASE_JWT_SECRET:
            payload = jwt.decode(
                token,
                settings.SUPABASE_JWT_SECRET,
                algorithms=["HS256"],
                audience=settings.JWT_AUDIENCE,
                issuer=settings.JWT_ISSUER,
                options={"verify_aud": True, "verify_iss": bool(settings.JWT_ISSUER)},
            )
        elif settings.APP_ENV == "dev":
            logger.warning("No JWT secret configured, using unverified token decode")
            payload = jwt.get_unverified_claims(token)
        else:
            logger.error("SUPABASE_JWT_SECRET is not configured")
            raise HTTPException(status_code=401, detail="Token verification unavailable")

        user_id = payload.get("sub")
        if not user_id:
            raise HTTPException(status_code=401, detail="Token missing user ID")
        try:
            uuid.UUID(user_id)
        except ValueError as exc:
            raise HTTPException(status_code=401, detail="Token subject is not a user ID") from exc

        return {
            "user_id": user_id,
            "role": payload.get("role", "authenticated"),
            "email": payload.get("email"),
        }

    except HTTPException:
        raise
    except ExpiredSignatureError as exc:
        raise HTTPException(status_code=401, detail="Token has expired") from exc
    except JWTError as e:
        raise HTTPException(status_code=401, detail=f"Invalid token: {str(e)}") from e


async def get_current_user(creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer)) -> Dict[str, Any]:
    """
    Resolve the caller from the bearer token. In dev, a missing token or one
    of the bypass tokens maps to a fixed test user.
    """
    if settings.APP_ENV == "dev":
        if not creds:
            logger.info("No credentials in dev mode, using test user")
            return {"user_id": DEV_USER_ID, "role": "authenticated"}
        if creds.credentials in DEV_BYPASS_TOKENS:
            logger.info("Dev bypass token used")
            return {"user_id": DEV_USER_ID, "role": "authenticated"}

    if not creds or creds.scheme.lower() != "bearer":
        raise HTTPException(status_code=401, detail="Missing Authorization header")

    return verify_supabase_token(creds.credentials)
