import os

import psutil
from fastapi import APIRouter, Depends

from ..dependencies import get_current_user, get_scheduler, get_settings
from ..logger import get_logger
from ..metrics import DISK_SPACE_AVAILABLE_BYTES
from ..scheduler import BackupScheduler

logger = get_logger(__name__)

router = APIRouter()


def _disk_usage(path: str) -> dict:
    """Usage of the filesystem holding `path`, or of its nearest existing parent."""
    probe = os.path.abspath(path)
    while not os.path.exists(probe) and os.path.dirname(probe) != probe:
        probe = os.path.dirname(probe)
    usage = psutil.disk_usage(probe)
    DISK_SPACE_AVAILABLE_BYTES.set(usage.free)
    return {"path": path, "total": usage.total, "used": usage.used, "free": usage.free, "percent": usage.percent}


@router.get("/healthcheck")
def healthcheck():
    return {"status": "OK"}


@router.get("/status", dependencies=[Depends(get_current_user)])
def system_status(
    settings: dict = Depends(get_settings),
    scheduler: BackupScheduler = Depends(get_scheduler),
):
    return {
        "scheduler": scheduler.status(),
        "disk": _disk_usage(settings["backup_root"]),
    }


@router.post("/scheduler/reload", dependencies=[Depends(get_current_user)])
def reload_scheduler(scheduler: BackupScheduler = Depends(get_scheduler)):
    """Rebuild the live job registry from the stored schedules."""
    logger.info("Reloading backup scheduler on request")
    count = scheduler.register_schedules()
    return {"status": "OK", "entries": count}
