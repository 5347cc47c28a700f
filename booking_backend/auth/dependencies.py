from dataclasses import dataclass

import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from booking_backend.auth import jwt_handler
from booking_backend.core.errors import UnauthorizedError
from booking_backend.models.user import ADMIN_ROLE

security = HTTPBearer()


@dataclass(frozen=True)
class ActingUser:
    """Identity handed over by the upstream authentication layer."""

    id: str
    role: str | None = None


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> ActingUser:
    token = credentials.credentials
    try:
        payload = jwt_handler.decode_access_token(token)
    except jwt.PyJWTError as exc:
        raise HTTPException(status_code=401, detail="Invalid token") from exc

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token subject")

    return ActingUser(id=str(user_id), role=payload.get("role"))


def require_admin(current_user: ActingUser = Depends(get_current_user)) -> ActingUser:
    if current_user.role != ADMIN_ROLE:
        raise UnauthorizedError("Only administrators can run scheduled jobs.")
    return current_user
