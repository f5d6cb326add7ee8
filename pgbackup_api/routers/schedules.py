from fastapi import APIRouter, Depends, status
from typing import List, Optional

from ..dependencies import get_current_user, get_scheduler
from ..logger import get_logger
from ..scheduler import BackupScheduler
from ..schemas import ScheduleCreate, ScheduleDetail, ScheduleUpdate

logger = get_logger(__name__)

router = APIRouter(dependencies=[Depends(get_current_user)])


@router.post("", response_model=ScheduleDetail, status_code=status.HTTP_201_CREATED)
def create_schedule(schedule_in: ScheduleCreate, scheduler: BackupScheduler = Depends(get_scheduler)):
    schedule = scheduler.create_schedule(schedule_in.connection_id, schedule_in.destination_id, schedule_in.schedule)
    scheduler.restart()
    return scheduler.get_schedule(schedule.id)


@router.get("", response_model=List[ScheduleDetail])
def list_schedules(
    connection_id: Optional[int] = None,
    destination_id: Optional[int] = None,
    enabled: Optional[bool] = None,
    scheduler: BackupScheduler = Depends(get_scheduler),
):
    return scheduler.list_schedules(connection_id, destination_id, enabled)


@router.get("/status")
def scheduler_status(scheduler: BackupScheduler = Depends(get_scheduler)):
    """Whether the scheduler runs and which jobs it currently holds."""
    return scheduler.status()


@router.get("/{schedule_id}", response_model=ScheduleDetail)
def get_schedule(schedule_id: int, scheduler: BackupScheduler = Depends(get_scheduler)):
    return scheduler.get_schedule(schedule_id)


@router.patch("/{schedule_id}", response_model=ScheduleDetail)
def update_schedule(
    schedule_id: int,
    schedule_update: ScheduleUpdate,
    scheduler: BackupScheduler = Depends(get_scheduler),
):
    updates = schedule_update.model_dump(exclude_unset=True)
    schedule = scheduler.update_schedule(schedule_id, updates)
    scheduler.restart()
    return scheduler.get_schedule(schedule.id)


@router.post("/{schedule_id}/enable", response_model=ScheduleDetail)
def enable_schedule(schedule_id: int, scheduler: BackupScheduler = Depends(get_scheduler)):
    scheduler.enable_schedule(schedule_id)
    scheduler.restart()
    return scheduler.get_schedule(schedule_id)


@router.post("/{schedule_id}/disable", response_model=ScheduleDetail)
def disable_schedule(schedule_id: int, scheduler: BackupScheduler = Depends(get_scheduler)):
    scheduler.disable_schedule(schedule_id)
    scheduler.restart()
    return scheduler.get_schedule(schedule_id)


@router.post("/{schedule_id}/recalculate", response_model=ScheduleDetail)
def recalculate_next_run(schedule_id: int, scheduler: BackupScheduler = Depends(get_scheduler)):
    return scheduler.recalculate_next_run(schedule_id)


@router.delete("/{schedule_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_schedule(schedule_id: int, scheduler: BackupScheduler = Depends(get_scheduler)):
    logger.info(f"Deleting schedule with id: {schedule_id}")
    scheduler.delete_schedule(schedule_id)
    scheduler.restart()
