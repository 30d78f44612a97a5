from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel
from typing import List, Optional
import jwt
from datetime import datetime, timedelta, timezone
from qbank_attempts.core.config import settings

ROLE_STUDENT = "student"
ROLE_ADMIN = "admin"

class TokenData(BaseModel):
    sub: str
    roles: List[str]
    name: Optional[str] = None

bearer = HTTPBearer()

def create_token(user_id: str, roles: List[str], name: Optional[str] = None, ttl_minutes: int = settings.ACCESS_TOKEN_EXPIRE_MINUTES) -> str:
    now = datetime.now(timezone.utc)
    payload = {"sub": user_id, "roles": roles, "iat": int(now.timestamp()), "exp": int((now + timedelta(minutes=ttl_minutes)).timestamp())}
    if name:
        payload["name"] = name
    return jwt.encode(payload, settings.APP_SECRET.get_secret_value(), algorithm=settings.JWT_ALGORITHM)

def get_current_user(creds: HTTPAuthorizationCredentials = Depends(bearer)) -> TokenData:
    try:
        payload = jwt.decode(creds.credentials, settings.APP_SECRET.get_secret_value(), algorithms=[settings.JWT_ALGORITHM])
        return TokenData(sub=payload["sub"], roles=payload.get("roles", []), name=payload.get("name"))
    except (jwt.PyJWTError, KeyError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token")

def require_roles(*required: str):
    def checker(user: TokenData = Depends(get_current_user)):
        roles = set(user.roles)
        if not roles.intersection(set(required)):
            raise HTTPException(status_code=403, detail="Insufficient role")
        return user
    return checker
