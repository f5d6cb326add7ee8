from dataclasses import dataclass
from typing import Optional
from datetime import datetime, timezone
from sqlalchemy import types
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Aware UTC copy of `value`; naive values are taken to be UTC already."""
    if value is None:
        return None
    if value.utcoffset() is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class UTCDateTime(types.TypeDecorator):
    """Timestamp column that stores and returns UTC; SQLite itself keeps no offset."""

    impl = types.DateTime
    cache_ok = True

    def __init__(self):
        super().__init__(timezone=True)

    def process_bind_param(self, value, dialect):
        return as_utc(value)

    def process_result_value(self, value, dialect):
        return as_utc(value)


class Connection(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    postgres_host: str
    postgres_port: str = "5432"
    postgres_db_name: str
    postgres_user: str
    postgres_password: str  # encrypted with vault.encrypt_string
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


class Destination(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    connection_id: int = Field(foreign_key="connection.id", index=True)
    name: str = Field(index=True, unique=True)
    endpoint_url: str
    region: str = ""
    bucket_name: str
    access_key_id: str  # encrypted
    secret_access_key: str  # encrypted
    path_prefix: str = ""
    use_ssl: bool = True
    verify_ssl: bool = True
    path_style: bool = True
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


class Schedule(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    connection_id: int = Field(foreign_key="connection.id", index=True)
    # None means the local filesystem
    destination_id: Optional[int] = Field(default=None, foreign_key="destination.id", index=True)
    schedule: str
    enabled: bool = Field(default=True, index=True)
    last_run: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    next_run: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(index=True, unique=True)
    password: str  # vault.hash_password output
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


@dataclass(frozen=True)
class ConnectionInfo:
    """Read-only view of a Connection borrowed for one backup operation."""

    id: Optional[int]
    host: str
    port: str
    dbname: str
    user: str
    encrypted_password: str

    @classmethod
    def from_record(cls, connection: Connection) -> "ConnectionInfo":
        return cls(
            id=connection.id,
            host=connection.postgres_host,
            port=str(connection.postgres_port),
            dbname=connection.postgres_db_name,
            user=connection.postgres_user,
            encrypted_password=connection.postgres_password,
        )


@dataclass(frozen=True)
class DestinationInfo:
    """Read-only view of a Destination; the keys stay encrypted."""

    id: Optional[int]
    name: str
    endpoint_url: str
    region: str
    bucket_name: str
    encrypted_access_key_id: str
    encrypted_secret_access_key: str
    path_prefix: str = ""
    use_ssl: bool = True
    verify_ssl: bool = True
    path_style: bool = True

    @classmethod
    def from_record(cls, destination: Destination) -> "DestinationInfo":
        return cls(
            id=destination.id,
            name=destination.name,
            endpoint_url=destination.endpoint_url,
            region=destination.region or "",
            bucket_name=destination.bucket_name,
            encrypted_access_key_id=destination.access_key_id,
            encrypted_secret_access_key=destination.secret_access_key,
            path_prefix=destination.path_prefix or "",
            use_ssl=destination.use_ssl,
            verify_ssl=destination.verify_ssl,
            path_style=destination.path_style,
        )
