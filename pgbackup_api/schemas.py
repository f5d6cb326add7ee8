from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional
from datetime import datetime


class ConnectionBase(BaseModel):
    postgres_host: str
    postgres_port: str = "5432"
    postgres_db_name: str
    postgres_user: str


class ConnectionCreate(ConnectionBase):
    postgres_password: str


class ConnectionUpdate(BaseModel):
    postgres_host: Optional[str] = None
    postgres_port: Optional[str] = None
    postgres_db_name: Optional[str] = None
    postgres_user: Optional[str] = None
    postgres_password: Optional[str] = None


class ConnectionDetail(ConnectionBase):
    id: int
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class DestinationBase(BaseModel):
    connection_id: int
    name: str = Field(min_length=1)
    endpoint_url: str = Field(min_length=1)
    region: str = ""
    bucket_name: str = Field(min_length=1)
    path_prefix: str = ""
    use_ssl: bool = True
    verify_ssl: bool = True
    path_style: bool = True


class DestinationCreate(DestinationBase):
    access_key_id: str = Field(min_length=1)
    secret_access_key: str = Field(min_length=1)


class DestinationUpdate(BaseModel):
    connection_id: Optional[int] = None
    name: Optional[str] = None
    endpoint_url: Optional[str] = None
    region: Optional[str] = None
    bucket_name: Optional[str] = None
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    path_prefix: Optional[str] = None
    use_ssl: Optional[bool] = None
    verify_ssl: Optional[bool] = None
    path_style: Optional[bool] = None


class DestinationDetail(DestinationBase):
    id: int
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ScheduleCreate(BaseModel):
    connection_id: int
    destination_id: Optional[int] = None
    schedule: str


class ScheduleUpdate(BaseModel):
    # Unknown keys are kept so the scheduler can log and drop them.
    model_config = ConfigDict(extra="allow")

    schedule: Optional[str] = None
    enabled: Optional[bool] = None
    connection_id: Optional[int] = None
    destination_id: Optional[int] = None


class ScheduleDetail(BaseModel):
    id: int
    connection_id: int
    destination_id: Optional[int] = None
    schedule: str
    enabled: bool
    last_run: Optional[datetime] = None
    next_run: Optional[datetime] = None

    class Config:
        from_attributes = True


class BackupRequest(BaseModel):
    database_id: int
    backup_destination: str = "local"


class RestoreRequest(BackupRequest):
    backup_filename: str


class BackupResult(BaseModel):
    status: str
    backup_filename: Optional[str] = None


class BackupList(BaseModel):
    status: str
    files: List[str]


class ConnectionTestResult(BaseModel):
    reachable: bool


class UserCreate(BaseModel):
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)


class UserDetail(BaseModel):
    id: int
    username: str
    created_at: datetime

    class Config:
        from_attributes = True


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
