from datetime import datetime, timedelta, timezone
from typing import Optional
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
import jwt
from storefront.core.config import Settings, settings
from storefront.services.identity import CustomerIdentity, client_ip

security = HTTPBearer(auto_error=False)

def create_access_token(sub: str, role: str, **claims) -> str:
    exp = datetime.now(timezone.utc) + timedelta(seconds=settings.ACCESS_TOKEN_EXPIRES_SECONDS)
    payload = {"sub": sub, "role": role, "exp": exp, "type": "access", **claims}
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)

def decode_access_token(token: str) -> dict:
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.PyJWTError:
        raise HTTPException(status_code=401, detail="Invalid token")
    if payload.get("type") != "access":
        raise HTTPException(status_code=401, detail="Invalid access token")
    return payload

def get_current_identity(creds: HTTPAuthorizationCredentials = Depends(security)) -> dict:
    if not creds:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return decode_access_token(creds.credentials)

def require_admin(identity: dict = Depends(get_current_identity)):
    if identity.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Admin only")
    return identity

def get_customer_identity(request: Request, creds: Optional[HTTPAuthorizationCredentials] = Depends(security)) -> CustomerIdentity:
    """Authenticated customer when a valid bearer token is sent, guest by IP otherwise.

    A token that is present but invalid is rejected rather than silently
    downgraded to a guest identity.
    """
    ip = client_ip(request.headers, request.client.host if request.client else None)
    if creds:
        payload = decode_access_token(creds.credentials)
        if not payload.get("sub"):
            raise HTTPException(status_code=401, detail="Invalid access token")
        return CustomerIdentity.authenticated(payload["sub"], payload.get("email"), ip=ip)
    if not ip:
        raise HTTPException(status_code=400, detail="Unable to determine customer identity")
    return CustomerIdentity.guest(ip)

# --- Review links ---

def create_review_token(order_id: int, now: Optional[datetime] = None, config: Optional[Settings] = None) -> str:
    config = config or settings
    issued = now or datetime.now(timezone.utc)
    payload = {
        "sub": str(order_id),
        "type": "order_review",
        "iat": issued,
        "exp": issued + timedelta(hours=config.REVIEW_TOKEN_TTL_HOURS),
    }
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)

def verify_review_token(token: str, order_id: int, config: Optional[Settings] = None) -> bool:
    """True when ``token`` is an unexpired review token for ``order_id``."""
    config = config or settings
    try:
        payload = jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
    except jwt.PyJWTError:
        return False
    return payload.get("type") == "order_review" and payload.get("sub") == str(order_id)
