from prometheus_client import Counter, Histogram, Gauge

BACKUPS_TOTAL = Counter(
    "pgbackup_backups_total",
    "Total number of backups.",
    ["database_name", "destination", "status"]
)

BACKUP_DURATION_SECONDS = Histogram(
    "pgbackup_backup_duration_seconds",
    "Duration of backup operations in seconds.",
    ["database_name"]
)

BACKUP_SIZE_BYTES = Gauge(
    "pgbackup_backup_size_bytes",
    "Size of the last successful backup in bytes.",
    ["database_name"]
)

RESTORES_TOTAL = Counter(
    "pgbackup_restores_total",
    "Total number of restores.",
    ["database_name", "destination", "status"]
)

BACKUPS_DELETED_TOTAL = Counter(
    "pgbackup_backups_deleted_total",
    "Total number of backup files deleted.",
    ["database_name", "destination"]
)

DISK_SPACE_AVAILABLE_BYTES = Gauge(
    "pgbackup_disk_space_available_bytes",
    "Available disk space in the local backup root in bytes."
)

SCHEDULER_REGISTERED_JOBS = Gauge(
    "pgbackup_scheduler_registered_jobs",
    "Number of backup schedules registered in the live scheduler."
)

SCHEDULE_LAST_RUN_TIMESTAMP_SECONDS = Gauge(
    "pgbackup_schedule_last_run_timestamp_seconds",
    "Timestamp of the last time a schedule fired.",
    ["schedule_id"]
)
