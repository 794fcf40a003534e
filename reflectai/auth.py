from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24

auth_scheme = HTTPBearer(auto_error=False)


def _credentials_error() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )


def create_access_token(user_id: str, secret_key: str, expires_delta: Optional[timedelta] = None) -> str:
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    return jwt.encode({"sub": user_id, "exp": expire}, secret_key, algorithm=ALGORITHM)


def verify_token(token: str, secret_key: Optional[str]) -> Dict[str, Any]:
    if not secret_key:
        raise _credentials_error()
    try:
        return jwt.decode(token, secret_key, algorithms=[ALGORITHM])
    except JWTError:
        raise _credentials_error()


def get_user_id_from_token(token: str, secret_key: Optional[str]) -> str:
    payload = verify_token(token, secret_key)
    user_id = payload.get("sub")
    if not user_id:
        raise _credentials_error()
    return str(user_id)


def get_current_user_id(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(auth_scheme),
) -> str:
    """Resolve the user from the bearer token, or the configured development user when there is none."""
    settings = request.app.state.settings
    if credentials is None:
        if settings.default_user_id:
            return settings.default_user_id
        raise _credentials_error()
    return get_user_id_from_token(credentials.credentials, settings.jwt_secret_key)
