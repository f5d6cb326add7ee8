# pgbackup_api/storage.py
import abc
import os
import shutil
from typing import Optional

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from .exceptions import ConnectivityError, CryptoError, NotFoundError, ValidationError
from .logger import get_logger
from .models import ConnectionInfo, DestinationInfo
from .vault import decrypt_string

logger = get_logger(__name__)

METADATA_CONNECT_TIMEOUT = 10
METADATA_READ_TIMEOUT = 30
TRANSFER_READ_TIMEOUT = 60 * 60
DOWNLOAD_CHUNK_SIZE = 8 * 1024 * 1024

_MISSING_CODES = {"404", "NoSuchKey", "NotFound"}


class StorageBackend(abc.ABC):
    """Namespace of snapshot files for one database on one destination."""

    @abc.abstractmethod
    def upload(self, local_path: str) -> None:
        pass

    @abc.abstractmethod
    def list_files(self) -> list[str]:
        pass

    @abc.abstractmethod
    def download(self, name: str, destination_path: str) -> None:
        pass

    @abc.abstractmethod
    def delete(self, name: str) -> None:
        pass

    @abc.abstractmethod
    def test_connection(self) -> bool:
        pass

    @staticmethod
    def _check_name(name: str) -> str:
        if not name or name in (".", "..") or "/" in name or "\\" in name:
            raise ValidationError(f"Invalid backup file name: {name!r}")
        return name


class LocalStorage(StorageBackend):
    def __init__(self, base_path: str, dbname: str, host: str, user: str):
        self.base_path = base_path
        self.directory = os.path.join(base_path, f"{dbname}-{host}-{user}")

    def path_for(self, name: str) -> str:
        return os.path.join(self.directory, self._check_name(name))

    def ensure_directory(self) -> str:
        os.makedirs(self.directory, mode=0o755, exist_ok=True)
        return self.directory

    def upload(self, local_path: str) -> None:
        # pg_dump already wrote the file into self.directory
        logger.debug(f"Local storage keeps {local_path} in place.")

    def list_files(self) -> list[str]:
        return sorted(
            entry for entry in os.listdir(self.directory)
            if os.path.isfile(os.path.join(self.directory, entry))
        )

    def download(self, name: str, destination_path: str) -> None:
        source = self.path_for(name)
        if not os.path.exists(source):
            raise NotFoundError(f"backup file not found: {name}")
        shutil.copy(source, destination_path)

    def delete(self, name: str) -> None:
        full_path = self.path_for(name)
        if not os.path.exists(full_path):
            logger.warning(f"Backup file does not exist: {full_path}")
            raise NotFoundError(f"backup file not found: {name}")
        os.remove(full_path)

    def test_connection(self) -> bool:
        try:
            self.ensure_directory()
        except OSError as e:
            logger.warning(f"Local backup directory {self.directory} is not usable: {e}")
            return False
        return os.access(self.directory, os.W_OK)


class S3Storage(StorageBackend):
    """
    Snapshot namespace in an S3-compatible bucket, under an optional prefix.

    A boto3 client is built for every operation. Access keys are decrypted
    right before the client is constructed and are not kept on the instance.
    """

    def __init__(self, destination: DestinationInfo):
        self.destination = destination
        self.bucket = destination.bucket_name
        self.prefix = destination.path_prefix.strip("/")

    def _endpoint_url(self) -> Optional[str]:
        endpoint = self.destination.endpoint_url.strip()
        if not endpoint:
            return None
        if "://" not in endpoint:
            scheme = "https" if self.destination.use_ssl else "http"
            endpoint = f"{scheme}://{endpoint}"
        return endpoint

    def _client(self, transfer: bool = False):
        try:
            access_key = decrypt_string(self.destination.encrypted_access_key_id)
            secret_key = decrypt_string(self.destination.encrypted_secret_access_key)
        except CryptoError:
            logger.error(f"Unable to decrypt credentials for destination '{self.destination.name}'.")
            raise

        config = Config(
            signature_version="s3v4",
            s3={"addressing_style": "path" if self.destination.path_style else "auto"},
            connect_timeout=METADATA_CONNECT_TIMEOUT,
            read_timeout=TRANSFER_READ_TIMEOUT if transfer else METADATA_READ_TIMEOUT,
            retries={"max_attempts": 3},
        )
        return boto3.client(
            "s3",
            endpoint_url=self._endpoint_url(),
            region_name=self.destination.region or None,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            use_ssl=self.destination.use_ssl,
            verify=self.destination.verify_ssl,
            config=config,
        )

    def key_for(self, name: str) -> str:
        name = self._check_name(name)
        return f"{self.prefix}/{name}" if self.prefix else name

    def _name_from_key(self, key: str) -> str:
        if self.prefix and key.startswith(self.prefix + "/"):
            return key[len(self.prefix) + 1:]
        return key

    def _fail(self, action: str, error: Exception):
        logger.error(f"Failed to {action} on bucket '{self.bucket}': {error}")
        raise ConnectivityError(f"failed to {action} on bucket {self.bucket}: {error}", original_error=error)

    def upload(self, local_path: str) -> None:
        key = self.key_for(os.path.basename(local_path))
        try:
            self._client(transfer=True).upload_file(local_path, self.bucket, key)
        except (ClientError, BotoCoreError) as e:
            self._fail(f"upload {key}", e)
        logger.info(f"Uploaded {local_path} to s3://{self.bucket}/{key}")

    def list_files(self) -> list[str]:
        params = {"Bucket": self.bucket}
        if self.prefix:
            params["Prefix"] = self.prefix + "/"

        files = []
        try:
            paginator = self._client().get_paginator("list_objects_v2")
            for page in paginator.paginate(**params):
                for obj in page.get("Contents", []):
                    name = self._name_from_key(obj["Key"])
                    if name and "/" not in name:
                        files.append(name)
        except (ClientError, BotoCoreError) as e:
            self._fail("list files", e)
        return files

    def download(self, name: str, destination_path: str) -> None:
        key = self.key_for(name)
        try:
            response = self._client(transfer=True).get_object(Bucket=self.bucket, Key=key)
            with open(destination_path, "wb") as f:
                for chunk in response["Body"].iter_chunks(DOWNLOAD_CHUNK_SIZE):
                    f.write(chunk)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in _MISSING_CODES:
                raise NotFoundError(f"backup file not found: {name}", original_error=e)
            self._fail(f"download {key}", e)
        except BotoCoreError as e:
            self._fail(f"download {key}", e)

    def delete(self, name: str) -> None:
        key = self.key_for(name)
        client = self._client()
        try:
            client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in _MISSING_CODES:
                raise NotFoundError(f"backup file not found: {name}", original_error=e)
            self._fail(f"check {key}", e)
        except BotoCoreError as e:
            self._fail(f"check {key}", e)

        try:
            client.delete_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            self._fail(f"delete {key}", e)

    def bucket_exists(self) -> bool:
        try:
            self._client().head_bucket(Bucket=self.bucket)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in _MISSING_CODES:
                return False
            self._fail("check bucket", e)
        except BotoCoreError as e:
            self._fail("check bucket", e)
        return True

    def test_connection(self) -> bool:
        try:
            self._client().list_objects_v2(Bucket=self.bucket, MaxKeys=1)
        except (ClientError, BotoCoreError, CryptoError) as e:
            logger.warning(f"Connection test failed for destination '{self.destination.name}': {e}")
            return False
        return True


def get_storage_backend(
    connection: ConnectionInfo,
    destination: Optional[DestinationInfo],
    backup_root: str,
) -> StorageBackend:
    if destination is None:
        return LocalStorage(backup_root, connection.dbname, connection.host, connection.user)
    return S3Storage(destination)
