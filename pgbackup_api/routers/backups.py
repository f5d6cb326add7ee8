from fastapi import APIRouter, Depends
from sqlmodel import Session

from .. import crud
from ..backup_manager import BackupManager
from ..database import get_session
from ..dependencies import get_current_user, get_settings
from ..exceptions import ValidationError
from ..logger import get_logger
from ..models import Connection, ConnectionInfo, Destination, DestinationInfo
from ..schemas import BackupList, BackupRequest, BackupResult, RestoreRequest

logger = get_logger(__name__)

router = APIRouter(dependencies=[Depends(get_current_user)])

LOCAL_DESTINATION = "local"


def _build_manager(session: Session, database_id: int, backup_destination: str, settings: dict) -> BackupManager:
    """Resolve a connection id and "local" or a destination id into a BackupManager."""
    connection = crud.get(session, Connection, database_id)

    destination = None
    if backup_destination and backup_destination != LOCAL_DESTINATION:
        try:
            destination_id = int(backup_destination)
        except ValueError as e:
            raise ValidationError(f"Invalid backup destination: {backup_destination!r}", original_error=e)
        record = crud.get(session, Destination, destination_id)
        if record.connection_id != connection.id:
            raise ValidationError(
                f"destination {destination_id} is not attached to connection {connection.id}"
            )
        destination = DestinationInfo.from_record(record)

    logger.debug(f"Resolved backup destination '{backup_destination}' for connection {connection.id}")
    return BackupManager(ConnectionInfo.from_record(connection), destination, settings)


@router.post("/create", response_model=BackupResult)
def create_backup(
    backup_req: BackupRequest,
    session: Session = Depends(get_session),
    settings: dict = Depends(get_settings),
):
    manager = _build_manager(session, backup_req.database_id, backup_req.backup_destination, settings)
    filename = manager.create_backup()
    return BackupResult(status="OK", backup_filename=filename)


@router.post("/restore", response_model=BackupResult)
def restore_backup(
    restore_req: RestoreRequest,
    session: Session = Depends(get_session),
    settings: dict = Depends(get_settings),
):
    manager = _build_manager(session, restore_req.database_id, restore_req.backup_destination, settings)
    manager.restore_from_backup(restore_req.backup_filename)
    return BackupResult(status="OK", backup_filename=restore_req.backup_filename)


@router.get("/list", response_model=BackupList)
def list_backups(
    database_id: int,
    backup_destination: str = LOCAL_DESTINATION,
    session: Session = Depends(get_session),
    settings: dict = Depends(get_settings),
):
    manager = _build_manager(session, database_id, backup_destination, settings)
    return BackupList(status="OK", files=manager.list_available_backups())


@router.delete("/delete", response_model=BackupResult)
def delete_backup(
    database_id: int,
    destination: str,
    filename: str,
    session: Session = Depends(get_session),
    settings: dict = Depends(get_settings),
):
    manager = _build_manager(session, database_id, destination, settings)
    manager.delete_backup(filename)
    return BackupResult(status="OK", backup_filename=filename)
