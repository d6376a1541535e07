"""Reusable FastAPI dependencies for auth, database access and the booking core."""
from typing import Callable

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from .auth import read_token
from .booking_service import BookingService
from .database import get_db
from .models import RoleEnum, User

oauth_scheme = OAuth2PasswordBearer(tokenUrl="/users/login")


def get_current_user(
    request: Request,
    token: str = Depends(oauth_scheme),
    db: Session = Depends(get_db),
) -> User:
    claims = read_token(token)
    request.state.username = claims.username
    user = db.get(User, claims.user_id)
    if user is None or user.username != claims.username:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


def get_current_active_user(current_user: User = Depends(get_current_user)) -> User:
    return current_user


def allow_roles(*roles: RoleEnum) -> Callable[[User], User]:
    def dependency(current_user: User = Depends(get_current_active_user)) -> User:
        if current_user.role not in roles:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
        return current_user

    return dependency


def get_booking_service(request: Request) -> BookingService:
    return request.app.state.booking_service
