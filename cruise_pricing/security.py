import os
from datetime import datetime, timedelta, timezone
from typing import Annotated, Optional

import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

bearer = HTTPBearer(auto_error=False)

JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_ALG = "HS256"
DEV_TOKEN_TTL_MINUTES = int(os.getenv("DEV_TOKEN_TTL_MINUTES", "720"))

# Roles allowed to edit pricing rules, promotions and read price history.
PRICING_ADMIN_ROLES = ("staff", "admin")


def issue_token(sub: str, role: str) -> str:
    exp = datetime.now(tz=timezone.utc) + timedelta(minutes=DEV_TOKEN_TTL_MINUTES)
    return jwt.encode({"sub": sub, "role": role, "exp": exp}, JWT_SECRET, algorithm=JWT_ALG)


def _principal_from(creds: Optional[HTTPAuthorizationCredentials]) -> dict:
    if creds is None:
        raise HTTPException(status_code=401, detail="Missing bearer token")
    try:
        return jwt.decode(creds.credentials, JWT_SECRET, algorithms=[JWT_ALG])
    except jwt.PyJWTError as e:
        raise HTTPException(status_code=401, detail=f"Invalid token: {e}")


def get_principal(creds: Annotated[Optional[HTTPAuthorizationCredentials], Depends(bearer)]) -> dict:
    return _principal_from(creds)


def require_roles(*allowed_roles: str):
    allowed = set(allowed_roles)

    def _dep(principal: Annotated[dict, Depends(get_principal)]) -> dict:
        if principal.get("role") not in allowed:
            raise HTTPException(status_code=403, detail="Forbidden")
        return principal

    return _dep


require_pricing_admin = require_roles(*PRICING_ADMIN_ROLES)
