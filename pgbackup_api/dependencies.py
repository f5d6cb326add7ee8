from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .auth import validate_jwt
from .exceptions import AuthenticationError
from .scheduler import BackupScheduler

bearer_scheme = HTTPBearer(auto_error=False)


def get_settings(request: Request) -> dict:
    return request.app.state.settings


def get_scheduler(request: Request) -> BackupScheduler:
    return request.app.state.scheduler


def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[str]:
    if credentials is None:
        return None
    return validate_jwt(credentials.credentials)["sub"]


def get_current_user(
    settings: dict = Depends(get_settings),
    username: Optional[str] = Depends(get_optional_user),
) -> Optional[str]:
    if not settings.get("auth_enabled", True):
        return username
    if username is None:
        raise AuthenticationError("JWT token not provided")
    return username
