"""
Record store access for connections, destinations, schedules and users.

Every write commits. Constraint violations surface as ConflictError and
missing rows as NotFoundError, so callers never handle SQLAlchemy errors.
"""
from typing import Type, TypeVar

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, SQLModel, select

from .exceptions import ConflictError, NotFoundError
from .logger import get_logger
from .models import utcnow

logger = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=SQLModel)


def _label(model: Type[SQLModel]) -> str:
    return model.__name__.lower()


def _commit(session: Session, action: str, model: Type[SQLModel]):
    try:
        session.commit()
    except IntegrityError as e:
        session.rollback()
        logger.warning(f"Constraint violation while trying to {action} {_label(model)}: {e.orig}")
        raise ConflictError(f"Cannot {action} {_label(model)}: constraint violation ({e.orig})", original_error=e)


def create(session: Session, obj: ModelT) -> ModelT:
    session.add(obj)
    _commit(session, "create", type(obj))
    session.refresh(obj)
    logger.debug(f"Created {_label(type(obj))} with id {obj.id}")
    return obj


def get(session: Session, model: Type[ModelT], obj_id) -> ModelT:
    obj = session.get(model, obj_id)
    if obj is None:
        raise NotFoundError(f"{_label(model)} with id {obj_id} not found")
    return obj


def list_all(session: Session, model: Type[ModelT], **filters) -> list[ModelT]:
    statement = select(model)
    for field, value in filters.items():
        if value is not None:
            statement = statement.where(getattr(model, field) == value)
    return list(session.exec(statement.order_by(model.id)).all())


def update(session: Session, model: Type[ModelT], obj_id, data: dict) -> ModelT:
    obj = get(session, model, obj_id)
    for key, value in data.items():
        setattr(obj, key, value)
    if hasattr(obj, "updated_at"):
        obj.updated_at = utcnow()
    session.add(obj)
    _commit(session, "update", model)
    session.refresh(obj)
    return obj


def delete(session: Session, model: Type[ModelT], obj_id) -> None:
    obj = get(session, model, obj_id)
    session.delete(obj)
    _commit(session, "delete", model)
    logger.debug(f"Deleted {_label(model)} with id {obj_id}")
