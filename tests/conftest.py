import os

import pytest
from sqlmodel import Session

# main.py configures logging at import time; keep test runs off the log file.
os.environ["LOG_FILE"] = ""

from pgbackup_api.config import DEFAULTS
from pgbackup_api.database import create_db_and_tables, make_engine
from pgbackup_api.models import Connection, ConnectionInfo, Destination, DestinationInfo
from pgbackup_api.vault import encrypt_string

TEST_SECRET_KEY = "test-secret-key-for-the-vault"
DB_PASSWORD = "s3cr3t-db-pass"


@pytest.fixture(autouse=True)
def secret_key(monkeypatch):
    """Every test runs with a known SECRET_KEY."""
    monkeypatch.setenv("SECRET_KEY", TEST_SECRET_KEY)
    return TEST_SECRET_KEY


@pytest.fixture()
def engine(tmp_path):
    """A file-backed SQLite metadata store, shared across threads."""
    engine = make_engine(f"sqlite:///{tmp_path / 'metadata.db'}")
    create_db_and_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture()
def settings(tmp_path):
    return {
        **DEFAULTS,
        "backup_root": str(tmp_path / "backups"),
        "secret_key": TEST_SECRET_KEY,
        "database_url": f"sqlite:///{tmp_path / 'metadata.db'}",
        "connect_timeout": 2,
    }


@pytest.fixture()
def connection_record(session):
    connection = Connection(
        postgres_host="db.internal",
        postgres_port="5432",
        postgres_db_name="orders",
        postgres_user="backup",
        postgres_password=encrypt_string(DB_PASSWORD),
    )
    session.add(connection)
    session.commit()
    session.refresh(connection)
    return connection


@pytest.fixture()
def destination_record(session, connection_record):
    destination = Destination(
        connection_id=connection_record.id,
        name="minio",
        endpoint_url="http://minio.internal:9000",
        region="us-east-1",
        bucket_name="pg-backups",
        access_key_id=encrypt_string("AKIATEST"),
        secret_access_key=encrypt_string("secret-access-key"),
        path_prefix="nightly",
    )
    session.add(destination)
    session.commit()
    session.refresh(destination)
    return destination


@pytest.fixture()
def connection_info(connection_record):
    return ConnectionInfo.from_record(connection_record)


@pytest.fixture()
def destination_info(destination_record):
    return DestinationInfo.from_record(destination_record)
