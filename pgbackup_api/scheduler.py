import threading
from datetime import datetime, timezone as dt_timezone
from typing import Optional

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from . import crud
from .backup_manager import BackupManager
from .config import DEFAULTS
from .cron import build_trigger, next_fire_time, next_fire_time_for, validate_expression
from .exceptions import BackupManagerError, ValidationError
from .logger import get_logger
from .metrics import SCHEDULER_REGISTERED_JOBS, SCHEDULE_LAST_RUN_TIMESTAMP_SECONDS
from .models import Connection, ConnectionInfo, Destination, DestinationInfo, Schedule, as_utc

logger = get_logger(__name__)

ALLOWED_UPDATE_FIELDS = ("schedule", "enabled", "connection_id", "destination_id")


def job_id_for(schedule_id: int) -> str:
    return f"backup_schedule_{schedule_id}"


class BackupScheduler:
    """
    Registry of enabled backup schedules backed by an APScheduler BackgroundScheduler.

    One instance is owned by the application. Stop, register, restart, status
    and single-job registration all run under one lock; backups themselves run
    on the executor's worker threads outside it.

    Each job keeps the Connection/Destination snapshot taken when it was
    registered. Any change to those records must be followed by restart().
    """

    def __init__(self, engine: Engine, settings: Optional[dict] = None):
        self.engine = engine
        self.settings = {**DEFAULTS, **(settings or {})}
        self.timezone = self.settings["timezone"]
        self.max_workers = int(self.settings["max_parallel_jobs"])
        self._scheduler: Optional[BackgroundScheduler] = None
        self._lock = threading.Lock()

    def _now(self) -> datetime:
        return datetime.now(dt_timezone.utc)

    def _new_scheduler(self) -> BackgroundScheduler:
        executors = {
            'default': ThreadPoolExecutor(self.max_workers)
        }
        return BackgroundScheduler(
            executors=executors,
            job_defaults={"coalesce": True, "misfire_grace_time": 60},
            timezone=self.timezone,
        )

    # -- schedule records ---------------------------------------------------

    def _check_destination(self, session: Session, destination_id: int, connection_id: int) -> None:
        destination = crud.get(session, Destination, destination_id)
        if destination.connection_id != connection_id:
            raise ValidationError(
                f"destination {destination_id} is not attached to connection {connection_id}"
            )

    def create_schedule(self, connection_id: int, destination_id: Optional[int], expression: str) -> Schedule:
        now = self._now()
        next_run = next_fire_time(expression, now, self.timezone)

        with Session(self.engine) as session:
            crud.get(session, Connection, connection_id)
            if destination_id is not None:
                self._check_destination(session, destination_id, connection_id)

            schedule = crud.create(session, Schedule(
                connection_id=connection_id,
                destination_id=destination_id,
                schedule=expression,
                enabled=True,
                next_run=as_utc(next_run),
            ))

        logger.info(f"Created schedule {schedule.id} ('{expression}'), next run: {next_run.isoformat()}")
        return schedule

    def update_schedule(self, schedule_id: int, updates: dict) -> Schedule:
        filtered = {}
        for key, value in updates.items():
            if key in ALLOWED_UPDATE_FIELDS:
                filtered[key] = value
            else:
                logger.warning(f"Ignoring update to non-allowed field: {key}")

        if not filtered:
            raise ValidationError("no valid fields to update")

        with Session(self.engine) as session:
            existing = crud.get(session, Schedule, schedule_id)

            connection_id = filtered.get("connection_id", existing.connection_id)
            destination_id = filtered.get("destination_id", existing.destination_id)
            if "connection_id" in filtered:
                crud.get(session, Connection, connection_id)
            if destination_id is not None:
                self._check_destination(session, destination_id, connection_id)

            expression = filtered.get("schedule", existing.schedule)
            if "schedule" in filtered:
                validate_expression(expression, self.timezone)
            enabled = filtered.get("enabled", existing.enabled)
            if "schedule" in filtered or "enabled" in filtered:
                if enabled:
                    next_run = next_fire_time(expression, self._now(), self.timezone)
                    filtered["next_run"] = as_utc(next_run)
                    logger.info(f"Updated next run time of schedule {schedule_id} to: {next_run.isoformat()}")
                else:
                    filtered["next_run"] = None

            schedule = crud.update(session, Schedule, schedule_id, filtered)

        logger.info(f"Updated schedule {schedule_id} with: {sorted(filtered)}")
        return schedule

    def enable_schedule(self, schedule_id: int) -> Schedule:
        return self.update_schedule(schedule_id, {"enabled": True})

    def disable_schedule(self, schedule_id: int) -> Schedule:
        return self.update_schedule(schedule_id, {"enabled": False})

    def delete_schedule(self, schedule_id: int) -> None:
        with Session(self.engine) as session:
            crud.delete(session, Schedule, schedule_id)
        logger.info(f"Deleted schedule {schedule_id}")

    def get_schedule(self, schedule_id: int) -> Schedule:
        with Session(self.engine) as session:
            return crud.get(session, Schedule, schedule_id)

    def list_schedules(
        self,
        connection_id: Optional[int] = None,
        destination_id: Optional[int] = None,
        enabled: Optional[bool] = None,
    ) -> list[Schedule]:
        with Session(self.engine) as session:
            schedules = crud.list_all(
                session, Schedule,
                connection_id=connection_id, destination_id=destination_id, enabled=enabled,
            )
        logger.debug(f"Found {len(schedules)} schedules")
        return schedules

    def recalculate_next_run(self, schedule_id: int) -> Schedule:
        with Session(self.engine) as session:
            schedule = crud.get(session, Schedule, schedule_id)
            next_run = next_fire_time(schedule.schedule, self._now(), self.timezone)
            schedule = crud.update(session, Schedule, schedule_id, {"next_run": as_utc(next_run)})
        logger.info(f"Recalculated next run time for schedule {schedule_id}: {next_run.isoformat()}")
        return schedule

    # -- live registry ------------------------------------------------------

    def _snapshot(self, session: Session, schedule: Schedule):
        connection = session.get(Connection, schedule.connection_id)
        if connection is None:
            raise ValidationError(f"connection {schedule.connection_id} no longer exists")
        destination = None
        if schedule.destination_id is not None:
            record = session.get(Destination, schedule.destination_id)
            if record is None:
                raise ValidationError(f"destination {schedule.destination_id} no longer exists")
            destination = DestinationInfo.from_record(record)
        return ConnectionInfo.from_record(connection), destination

    def _add_job(self, scheduler: BackgroundScheduler, schedule: Schedule, trigger, next_run: datetime,
                 connection: ConnectionInfo, destination: Optional[DestinationInfo]):
        scheduler.add_job(
            self.execute_backup,
            trigger=trigger,
            args=[schedule.id, schedule.schedule, connection, destination],
            id=job_id_for(schedule.id),
            name=f"Backup of {connection.dbname}@{connection.host} (schedule {schedule.id})",
            next_run_time=next_run,
            replace_existing=True,
        )

    def _stop_locked(self):
        if self._scheduler is not None:
            logger.info("Stopping backup scheduler...")
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            SCHEDULER_REGISTERED_JOBS.set(0)

    def register_schedules(self) -> int:
        """Rebuild the live registry from every enabled schedule; returns the job count."""
        with self._lock:
            self._stop_locked()
            scheduler = self._new_scheduler()
            now = self._now()

            with Session(self.engine) as session:
                schedules = crud.list_all(session, Schedule, enabled=True)
                logger.info(f"Registering {len(schedules)} backup schedules")

                for schedule in schedules:
                    try:
                        trigger = build_trigger(schedule.schedule, self.timezone, now)
                        next_run = next_fire_time_for(trigger, now)
                        connection, destination = self._snapshot(session, schedule)
                    except ValidationError as e:
                        logger.error(f"Failed to register backup job for schedule {schedule.id}: {e}")
                        continue

                    schedule.next_run = as_utc(next_run)
                    session.add(schedule)
                    self._add_job(scheduler, schedule, trigger, next_run, connection, destination)
                    logger.info(f"Registered backup schedule {schedule.id} with cron: {schedule.schedule}")

                session.commit()

            scheduler.start()
            self._scheduler = scheduler
            count = len(scheduler.get_jobs())
            SCHEDULER_REGISTERED_JOBS.set(count)

        logger.info(f"All backup schedules registered ({count}), scheduler started.")
        return count

    def stop(self) -> None:
        with self._lock:
            self._stop_locked()

    def restart(self) -> None:
        """Stop and rebuild the registry. Errors are logged, never raised."""
        logger.info("Restarting backup scheduler...")
        try:
            self.stop()
            self.register_schedules()
        except (BackupManagerError, SQLAlchemyError, ValueError) as e:
            logger.error(f"Failed to restart backup scheduler: {e}", exc_info=True)

    def add_single_schedule(self, schedule_id: int) -> None:
        """Register one schedule in the running scheduler without a rebuild."""
        with self._lock:
            if self._scheduler is None:
                raise ValidationError("scheduler is not running")

            now = self._now()
            with Session(self.engine) as session:
                schedule = crud.get(session, Schedule, schedule_id)
                if not schedule.enabled:
                    raise ValidationError(f"schedule {schedule_id} is disabled")
                trigger = build_trigger(schedule.schedule, self.timezone, now)
                next_run = next_fire_time_for(trigger, now)
                connection, destination = self._snapshot(session, schedule)
                schedule.next_run = as_utc(next_run)
                session.add(schedule)
                session.commit()
                session.refresh(schedule)
                self._add_job(self._scheduler, schedule, trigger, next_run, connection, destination)

            SCHEDULER_REGISTERED_JOBS.set(len(self._scheduler.get_jobs()))
        logger.info(f"Added single schedule {schedule_id} to running scheduler")

    def status(self) -> dict:
        with self._lock:
            running = self._scheduler is not None and self._scheduler.running
            jobs = self._scheduler.get_jobs() if self._scheduler is not None else []
            return {
                "running": running,
                "entries": len(jobs),
                "jobs": [
                    {
                        "id": job.id,
                        "name": job.name,
                        "next_run_time": job.next_run_time.isoformat() if job.next_run_time else None,
                    }
                    for job in jobs
                ],
            }

    def get_job(self, schedule_id: int):
        with self._lock:
            if self._scheduler is None:
                return None
            return self._scheduler.get_job(job_id_for(schedule_id))

    # -- firing -------------------------------------------------------------

    def _update_run_times(self, schedule_id: int, expression: str) -> None:
        now = self._now()
        try:
            next_run = next_fire_time(expression, now, self.timezone)
            with Session(self.engine) as session:
                schedule = session.get(Schedule, schedule_id)
                if schedule is None:
                    logger.warning(f"Schedule {schedule_id} disappeared before it fired")
                    return
                schedule.last_run = as_utc(now)
                schedule.next_run = as_utc(next_run)
                session.add(schedule)
                session.commit()
        except (ValidationError, SQLAlchemyError) as e:
            logger.error(f"Error updating run times for schedule {schedule_id}: {e}")
            return

        SCHEDULE_LAST_RUN_TIMESTAMP_SECONDS.labels(schedule_id=str(schedule_id)).set(now.timestamp())
        logger.info(f"Updated schedule {schedule_id}: last_run={now.isoformat()}, next_run={next_run.isoformat()}")

    def execute_backup(
        self,
        schedule_id: int,
        expression: str,
        connection: ConnectionInfo,
        destination: Optional[DestinationInfo],
    ) -> Optional[str]:
        """Job body: record the run, then back up synchronously on this worker."""
        logger.info(f"Executing backup for schedule ID: {schedule_id}")
        self._update_run_times(schedule_id, expression)

        manager = BackupManager(connection, destination, self.settings)
        try:
            filename = manager.create_backup()
        except BackupManagerError as e:
            logger.error(f"Scheduled backup for schedule {schedule_id} failed: {e}")
            return None

        logger.info(f"Backup executed for schedule ID: {schedule_id} ({filename})")
        return filename
