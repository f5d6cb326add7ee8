from datetime import timedelta

from fastapi import APIRouter, Depends, status
from sqlmodel import Session, select
from typing import List, Optional

from .. import crud
from ..auth import create_jwt
from ..database import get_session
from ..dependencies import get_current_user, get_optional_user, get_settings
from ..exceptions import AuthenticationError, InvalidPasswordError
from ..logger import get_logger
from ..models import User
from ..schemas import Token, UserCreate, UserDetail
from ..vault import hash_password, validate_password

logger = get_logger(__name__)

router = APIRouter()


@router.post("", response_model=UserDetail, status_code=status.HTTP_201_CREATED)
def create_user(
    user_in: UserCreate,
    session: Session = Depends(get_session),
    settings: dict = Depends(get_settings),
    username: Optional[str] = Depends(get_optional_user),
):
    """
    Register an API user.

    The first user can be created anonymously; once one exists a valid token
    is required (when authentication is enabled).
    """
    has_users = session.exec(select(User.id).limit(1)).first() is not None
    if has_users and settings.get("auth_enabled", True) and username is None:
        raise AuthenticationError("JWT token not provided")

    user = crud.create(session, User(username=user_in.username, password=hash_password(user_in.password)))
    logger.info(f"Created user '{user.username}' (ID: {user.id})")
    return user


@router.get("", response_model=List[UserDetail], dependencies=[Depends(get_current_user)])
def list_users(session: Session = Depends(get_session)):
    return crud.list_all(session, User)


@router.post("/login", response_model=Token)
def login(
    credentials: UserCreate,
    session: Session = Depends(get_session),
    settings: dict = Depends(get_settings),
):
    user = session.exec(select(User).where(User.username == credentials.username)).first()
    if user is None:
        logger.warning(f"Login attempt for unknown user '{credentials.username}'")
        raise AuthenticationError("invalid username or password")
    try:
        validate_password(credentials.password, user.password)
    except InvalidPasswordError as e:
        logger.warning(f"Failed login for user '{credentials.username}'")
        raise AuthenticationError("invalid username or password", original_error=e)

    token = create_jwt(user.username, timedelta(hours=int(settings["jwt_expire_hours"])))
    logger.info(f"User '{user.username}' logged in")
    return Token(access_token=token)
