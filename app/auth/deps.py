from typing import Optional
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jwt import PyJWTError
from app.auth.jwt import decode_token

bearer = HTTPBearer(auto_error=False)


def get_current_user_id(creds: HTTPAuthorizationCredentials = Depends(bearer)) -> str:
    if not creds:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="unauthorized")
    try:
        data = decode_token(creds.credentials)
    except PyJWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="unauthorized")
    if data.get("typ") != "access" or not data.get("sub"):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="unauthorized")
    return str(data["sub"])


def ensure_same_user(user_id: str, body_user_id: Optional[str]) -> None:
    """Bodies may echo the caller's user_id; a different one is rejected."""
    if body_user_id is not None and str(body_user_id) != user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="user_mismatch")
