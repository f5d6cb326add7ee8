import os
import subprocess
import tempfile
import time
from datetime import datetime
from typing import Optional

import psycopg2

from .config import DEFAULTS
from .error_parser import summarize_pg_error
from .exceptions import (
    BackupManagerError, ConflictError, ConnectivityError, NotFoundError, SubprocessError, ValidationError
)
from .logger import get_logger
from .metrics import (
    BACKUPS_TOTAL, BACKUP_DURATION_SECONDS, BACKUP_SIZE_BYTES, BACKUPS_DELETED_TOTAL, RESTORES_TOTAL
)
from .models import ConnectionInfo, DestinationInfo
from .storage import LocalStorage, StorageBackend, get_storage_backend
from .vault import decrypt_string

logger = get_logger(__name__)

BACKUP_FILENAME_FORMAT = "backup_{timestamp}.dump"
TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"


class BackupManager:
    """
    Runs one backup, restore, listing or deletion for a single source database.

    Holds no state between calls beyond the borrowed connection and destination
    snapshots. `destination=None` selects the local filesystem.
    """

    def __init__(
        self,
        connection: ConnectionInfo,
        destination: Optional[DestinationInfo] = None,
        settings: Optional[dict] = None,
        storage: Optional[StorageBackend] = None,
    ):
        self.connection = connection
        self.destination = destination
        self.settings = {**DEFAULTS, **(settings or {})}
        backup_root = self.settings["backup_root"]
        self.local = LocalStorage(backup_root, connection.dbname, connection.host, connection.user)
        self.storage = storage or get_storage_backend(connection, destination, backup_root)

    @property
    def destination_label(self) -> str:
        return "local" if self.destination is None else self.destination.name

    def _password(self) -> str:
        return decrypt_string(self.connection.encrypted_password)

    def _port(self) -> int:
        try:
            return int(self.connection.port)
        except ValueError as e:
            raise ValidationError(f"Invalid port: {self.connection.port!r}", original_error=e)

    def check_connectivity(self) -> None:
        """Open and immediately close a connection to the source database."""
        c = self.connection
        try:
            conn = psycopg2.connect(
                host=c.host,
                port=self._port(),
                dbname=c.dbname,
                user=c.user,
                password=self._password(),
                connect_timeout=self.settings["connect_timeout"],
            )
        except psycopg2.Error as e:
            logger.warning(f"Unable to connect to {c.user}@{c.host}:{c.port}/{c.dbname}: {str(e).strip()}")
            raise ConnectivityError(f"database connection failed: {str(e).strip()}", original_error=e)
        conn.close()

    def _run_tool(self, cmd: list[str]) -> str:
        env = os.environ.copy()
        env["PGPASSWORD"] = self._password()
        logger.debug(f"Executing command: {' '.join(cmd)}")
        try:
            # -W makes the tools prompt: no tty (new session) and an empty stdin
            # leave the prompt blank so libpq falls back to PGPASSWORD.
            result = subprocess.run(
                cmd,
                env=env,
                stdin=subprocess.DEVNULL,
                capture_output=True,
                text=True,
                start_new_session=True,
            )
        except FileNotFoundError as e:
            raise SubprocessError(f"{cmd[0]} executable not found", summary=str(e))

        if result.returncode != 0:
            summary = summarize_pg_error(result.stderr)
            logger.error(f"{cmd[0]} failed with exit code {result.returncode}: {summary}")
            raise SubprocessError(
                f"{os.path.basename(cmd[0])} failed with exit code {result.returncode}",
                returncode=result.returncode,
                stderr=result.stderr,
                summary=summary,
            )
        return result.stderr

    def _dump_command(self, output_path: str) -> list[str]:
        c = self.connection
        return [
            self.settings["pg_dump_path"],
            "-h", c.host,
            "-p", str(c.port),
            "-U", c.user,
            "-d", c.dbname,
            "-W",
            "-Fc",
            "-f", output_path,
        ]

    def _restore_command(self, input_path: str) -> list[str]:
        c = self.connection
        return [
            self.settings["pg_restore_path"],
            "-h", c.host,
            "-p", str(c.port),
            "-U", c.user,
            "-d", c.dbname,
            "-c",
            "--if-exists",
            "-v",
            input_path,
        ]

    def create_backup(self) -> str:
        """Dump the database and place the snapshot; returns its file name."""
        db_name = self.connection.dbname
        logger.info(f"Starting backup of '{db_name}' on {self.connection.host} to {self.destination_label}")
        start_time = time.time()
        status = "failed"

        try:
            self.check_connectivity()

            directory = self.local.ensure_directory()
            timestamp = datetime.now().strftime(TIMESTAMP_FORMAT)
            filename = BACKUP_FILENAME_FORMAT.format(timestamp=timestamp)
            output_path = os.path.join(directory, filename)
            if os.path.exists(output_path):
                # Timestamps have one-second resolution.
                raise ConflictError(f"backup file already exists: {filename}")

            try:
                self._run_tool(self._dump_command(output_path))
            except SubprocessError:
                if os.path.exists(output_path):
                    os.remove(output_path)
                raise

            size_bytes = os.path.getsize(output_path)

            if self.destination is None:
                logger.info(f"Backup stored on local filesystem: {output_path}")
            else:
                try:
                    self.storage.upload(output_path)
                except BackupManagerError as e:
                    logger.error(f"Upload to '{self.destination_label}' failed, local copy kept at {output_path}")
                    raise ConnectivityError(
                        f"upload to destination '{self.destination_label}' failed, "
                        f"local copy retained: {e.message}",
                        original_error=e,
                    )
                os.remove(output_path)
                logger.info(f"Backup {filename} uploaded to '{self.destination_label}'")

            BACKUP_SIZE_BYTES.labels(database_name=db_name).set(size_bytes)
            status = "completed"
            return filename

        finally:
            duration = time.time() - start_time
            BACKUPS_TOTAL.labels(database_name=db_name, destination=self.destination_label, status=status).inc()
            BACKUP_DURATION_SECONDS.labels(database_name=db_name).observe(duration)
            logger.info(f"Backup of '{db_name}' finished. Status: {status}. Duration: {duration:.2f}s")

    def restore_from_backup(self, filename: str) -> None:
        db_name = self.connection.dbname
        logger.info(f"Restoring '{db_name}' from {filename} ({self.destination_label})")
        status = "failed"

        try:
            if self.destination is None:
                backup_path = self.local.path_for(filename)
                if not os.path.exists(backup_path):
                    logger.warning(f"Backup file does not exist: {backup_path}")
                    raise NotFoundError(f"backup file not found: {filename}")
                self.check_connectivity()
                self._run_tool(self._restore_command(backup_path))
            else:
                fd, temp_path = tempfile.mkstemp(prefix="restore_", suffix=".dump")
                os.close(fd)
                try:
                    logger.info(f"Downloading {filename} from '{self.destination_label}' to {temp_path}")
                    self.storage.download(filename, temp_path)
                    self.check_connectivity()
                    self._run_tool(self._restore_command(temp_path))
                finally:
                    if os.path.exists(temp_path):
                        logger.debug(f"Removing temporary file: {temp_path}")
                        os.remove(temp_path)

            status = "completed"
            logger.info(f"Successfully restored '{db_name}' from {filename}")
        finally:
            RESTORES_TOTAL.labels(database_name=db_name, destination=self.destination_label, status=status).inc()

    def delete_backup(self, filename: str) -> None:
        logger.info(f"Deleting backup {filename} from {self.destination_label}")
        self.storage.delete(filename)
        BACKUPS_DELETED_TOTAL.labels(database_name=self.connection.dbname, destination=self.destination_label).inc()
        logger.info(f"Successfully deleted backup file: {filename}")

    def list_available_backups(self) -> list[str]:
        """Snapshot names on the destination; an empty list when listing fails."""
        logger.info(f"Searching for backups of '{self.connection.dbname}' in {self.destination_label}")
        try:
            files = self.storage.list_files()
        except (BackupManagerError, OSError) as e:
            logger.warning(f"Unable to list backups in {self.destination_label}: {e}")
            return []
        logger.info(f"Found {len(files)} files")
        return files
