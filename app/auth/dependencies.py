from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt

from app.auth.schemas import CurrentUser
from app.core.config import settings


oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login-oauth")


async def get_current_user(token: str = Depends(oauth2_scheme)) -> CurrentUser:
    """Resolve the authenticated caller from the access token claims."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError:
        raise credentials_exception

    user_id = payload.get("user_id") or payload.get("sub")
    role_name = payload.get("role")
    if not user_id or not role_name:
        raise credentials_exception

    return CurrentUser(
        id=str(user_id),
        email=payload.get("email"),
        role=str(role_name).upper(),
        student_id=payload.get("student_id"),
    )
