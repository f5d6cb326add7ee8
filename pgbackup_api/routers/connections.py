from fastapi import APIRouter, Depends, status
from sqlmodel import Session
from typing import List

from .. import crud
from ..backup_manager import BackupManager
from ..database import get_session
from ..dependencies import get_current_user, get_scheduler, get_settings
from ..exceptions import ConnectivityError
from ..logger import get_logger
from ..models import Connection, ConnectionInfo
from ..scheduler import BackupScheduler
from ..schemas import ConnectionCreate, ConnectionDetail, ConnectionTestResult, ConnectionUpdate
from ..vault import encrypt_string

logger = get_logger(__name__)

router = APIRouter(dependencies=[Depends(get_current_user)])


def _reachable(connection: Connection, settings: dict) -> bool:
    manager = BackupManager(ConnectionInfo.from_record(connection), settings=settings)
    try:
        manager.check_connectivity()
    except ConnectivityError:
        return False
    return True


@router.post("", response_model=ConnectionDetail, status_code=status.HTTP_201_CREATED)
def create_connection(
    conn_in: ConnectionCreate,
    test_connection: bool = False,
    session: Session = Depends(get_session),
    settings: dict = Depends(get_settings),
):
    logger.info(f"Registering connection to {conn_in.postgres_user}@{conn_in.postgres_host}/{conn_in.postgres_db_name}")
    data = conn_in.model_dump()
    data["postgres_password"] = encrypt_string(conn_in.postgres_password)
    connection = Connection(**data)

    if test_connection and not _reachable(connection, settings):
        raise ConnectivityError("Could not reach the specified database")

    connection = crud.create(session, connection)
    logger.info(f"Successfully registered connection with id: {connection.id}")
    return connection


@router.get("", response_model=List[ConnectionDetail])
def list_connections(session: Session = Depends(get_session)):
    connections = crud.list_all(session, Connection)
    logger.debug(f"Found {len(connections)} connections.")
    return connections


@router.get("/{connection_id}", response_model=ConnectionDetail)
def get_connection(connection_id: int, session: Session = Depends(get_session)):
    return crud.get(session, Connection, connection_id)


@router.post("/{connection_id}/test", response_model=ConnectionTestResult)
def check_connection(
    connection_id: int,
    session: Session = Depends(get_session),
    settings: dict = Depends(get_settings),
):
    connection = crud.get(session, Connection, connection_id)
    return ConnectionTestResult(reachable=_reachable(connection, settings))


@router.patch("/{connection_id}", response_model=ConnectionDetail)
def update_connection(
    connection_id: int,
    conn_update: ConnectionUpdate,
    session: Session = Depends(get_session),
    scheduler: BackupScheduler = Depends(get_scheduler),
):
    update_data = conn_update.model_dump(exclude_unset=True)
    logger.debug(f"Updating fields {sorted(update_data)} for connection {connection_id}")
    if update_data.get("postgres_password") is not None:
        update_data["postgres_password"] = encrypt_string(update_data["postgres_password"])

    connection = crud.update(session, Connection, connection_id, update_data)
    scheduler.restart()
    return connection


@router.delete("/{connection_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_connection(
    connection_id: int,
    session: Session = Depends(get_session),
    scheduler: BackupScheduler = Depends(get_scheduler),
):
    logger.info(f"Deleting connection with id: {connection_id}")
    crud.delete(session, Connection, connection_id)
    scheduler.restart()
