from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlmodel import Session
from typing import List, Optional

from .. import crud
from ..database import get_session
from ..dependencies import get_current_user, get_scheduler
from ..logger import get_logger
from ..models import Connection, Destination, DestinationInfo
from ..scheduler import BackupScheduler
from ..schemas import ConnectionTestResult, DestinationCreate, DestinationDetail, DestinationUpdate
from ..storage import S3Storage
from ..vault import encrypt_string

logger = get_logger(__name__)

router = APIRouter(dependencies=[Depends(get_current_user)])

SECRET_FIELDS = ("access_key_id", "secret_access_key")


@router.post("", response_model=DestinationDetail, status_code=status.HTTP_201_CREATED)
def create_destination(
    dest_in: DestinationCreate,
    test_connection: bool = False,
    session: Session = Depends(get_session),
):
    logger.info(f"Creating backup destination '{dest_in.name}' (bucket {dest_in.bucket_name}) "
                f"for connection {dest_in.connection_id}")
    data = dest_in.model_dump()
    for field in SECRET_FIELDS:
        data[field] = encrypt_string(data[field])
    destination = Destination(**data)

    if test_connection:
        # Probe only; nothing is saved.
        reachable = S3Storage(DestinationInfo.from_record(destination)).test_connection()
        if not reachable:
            logger.warning(f"S3 connection test failed for destination: {dest_in.name}")
            return JSONResponse(
                status_code=status.HTTP_408_REQUEST_TIMEOUT,
                content={"status": 408, "message": "Could not reach specified backup destination"},
            )
        logger.info(f"S3 connection test successful for destination: {dest_in.name}")
        return JSONResponse(
            status_code=status.HTTP_200_OK,
            content={"status": 200, "message": "Connection test successful"},
        )

    crud.get(session, Connection, dest_in.connection_id)
    destination = crud.create(session, destination)
    logger.info(f"Backup destination created successfully: {destination.name} (ID: {destination.id})")
    return destination


@router.get("", response_model=List[DestinationDetail])
def list_destinations(connection_id: Optional[int] = None, session: Session = Depends(get_session)):
    return crud.list_all(session, Destination, connection_id=connection_id)


@router.get("/{destination_id}", response_model=DestinationDetail)
def get_destination(destination_id: int, session: Session = Depends(get_session)):
    return crud.get(session, Destination, destination_id)


@router.post("/{destination_id}/test", response_model=ConnectionTestResult)
def test_destination(destination_id: int, session: Session = Depends(get_session)):
    destination = crud.get(session, Destination, destination_id)
    reachable = S3Storage(DestinationInfo.from_record(destination)).test_connection()
    return ConnectionTestResult(reachable=reachable)


@router.patch("/{destination_id}", response_model=DestinationDetail)
def update_destination(
    destination_id: int,
    dest_update: DestinationUpdate,
    session: Session = Depends(get_session),
    scheduler: BackupScheduler = Depends(get_scheduler),
):
    update_data = dest_update.model_dump(exclude_unset=True)
    logger.debug(f"Updating fields {sorted(update_data)} for destination {destination_id}")
    for field in SECRET_FIELDS:
        if update_data.get(field) is not None:
            update_data[field] = encrypt_string(update_data[field])
    if update_data.get("connection_id") is not None:
        crud.get(session, Connection, update_data["connection_id"])

    destination = crud.update(session, Destination, destination_id, update_data)
    scheduler.restart()
    return destination


@router.delete("/{destination_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_destination(
    destination_id: int,
    session: Session = Depends(get_session),
    scheduler: BackupScheduler = Depends(get_scheduler),
):
    logger.info(f"Deleting destination with id: {destination_id}")
    crud.delete(session, Destination, destination_id)
    scheduler.restart()
