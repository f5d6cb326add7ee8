"""End-to-end tests of the HTTP surface with FastAPI's TestClient."""

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session

from pgbackup_api.database import get_engine
from pgbackup_api.main import app
from pgbackup_api.models import Connection, Destination
from pgbackup_api.vault import decrypt_string

CONNECTION = {
    "postgres_host": "db.internal",
    "postgres_port": "5432",
    "postgres_db_name": "orders",
    "postgres_user": "backup",
    "postgres_password": "s3cr3t-db-pass",
}


def destination_payload(connection_id: int, name: str = "minio") -> dict:
    return {
        "connection_id": connection_id,
        "name": name,
        "endpoint_url": "http://minio.internal:9000",
        "bucket_name": "pg-backups",
        "access_key_id": "AKIATEST",
        "secret_access_key": "secret-access-key",
    }


@pytest.fixture()
def app_env(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'api.db'}")
    monkeypatch.setenv("BACKUP_ROOT", str(tmp_path / "backups"))
    monkeypatch.setenv("AUTH_ENABLED", "false")
    return monkeypatch


@pytest.fixture()
def client(app_env):
    with TestClient(app) as client:
        yield client


@pytest.fixture()
def auth_client(app_env):
    app_env.setenv("AUTH_ENABLED", "true")
    with TestClient(app) as client:
        yield client


def create_connection(client) -> int:
    response = client.post("/connections", json=CONNECTION)
    assert response.status_code == 201
    return response.json()["id"]


class TestSystem:
    """Test cases for the system endpoints."""

    def test_healthcheck(self, client) -> None:
        """Test the liveness endpoint."""
        response = client.get("/system/healthcheck")
        assert response.status_code == 200
        assert response.json() == {"status": "OK"}

    def test_status(self, client) -> None:
        """Test that status reports the scheduler and disk usage."""
        body = client.get("/system/status").json()
        assert body["scheduler"]["running"] is True
        assert body["disk"]["free"] > 0

    def test_reload(self, client) -> None:
        """Test rebuilding the registry on request."""
        assert client.post("/system/scheduler/reload").json() == {"status": "OK", "entries": 0}

    def test_metrics_exposed(self, client) -> None:
        """Test that Prometheus metrics are served."""
        response = client.get("/metrics")
        assert response.status_code == 200
        assert "pgbackup_backups_total" in response.text


class TestConnections:
    """Test cases for /connections."""

    def test_create_hides_and_encrypts_password(self, client) -> None:
        """Test that the password is stored sealed and never returned."""
        response = client.post("/connections", json=CONNECTION)

        assert response.status_code == 201
        body = response.json()
        assert "postgres_password" not in body
        with Session(get_engine()) as session:
            stored = session.get(Connection, body["id"])
        assert stored.postgres_password != CONNECTION["postgres_password"]
        assert decrypt_string(stored.postgres_password) == CONNECTION["postgres_password"]

    def test_get_missing(self, client) -> None:
        """Test the JSON error body for a missing record."""
        response = client.get("/connections/999")
        assert response.status_code == 404
        assert response.json()["error"] == "NotFoundError"

    def test_update_and_delete(self, client) -> None:
        """Test partial update and deletion."""
        connection_id = create_connection(client)

        response = client.patch(f"/connections/{connection_id}", json={"postgres_host": "db2.internal"})
        assert response.json()["postgres_host"] == "db2.internal"

        assert client.delete(f"/connections/{connection_id}").status_code == 204
        assert client.get("/connections").json() == []

    def test_create_with_unreachable_database(self, client) -> None:
        """Test that a failed reachability probe refuses the record."""
        with patch("pgbackup_api.routers.connections._reachable", return_value=False):
            response = client.post("/connections?test_connection=true", json=CONNECTION)
        assert response.status_code == 502
        assert client.get("/connections").json() == []


class TestDestinations:
    """Test cases for /destinations."""

    def test_create_hides_and_encrypts_keys(self, client) -> None:
        """Test that access keys are sealed at rest and absent from responses."""
        connection_id = create_connection(client)

        response = client.post("/destinations", json=destination_payload(connection_id))

        assert response.status_code == 201
        body = response.json()
        assert "access_key_id" not in body and "secret_access_key" not in body
        with Session(get_engine()) as session:
            stored = session.get(Destination, body["id"])
        assert decrypt_string(stored.secret_access_key) == "secret-access-key"

    def test_duplicate_name(self, client) -> None:
        """Test that destination names are unique."""
        connection_id = create_connection(client)
        client.post("/destinations", json=destination_payload(connection_id))
        response = client.post("/destinations", json=destination_payload(connection_id))
        assert response.status_code == 409

    def test_probe_unreachable(self, client) -> None:
        """Test that a failed connection test answers 408 and saves nothing."""
        connection_id = create_connection(client)
        with patch("pgbackup_api.routers.destinations.S3Storage.test_connection", return_value=False):
            response = client.post("/destinations?test_connection=true", json=destination_payload(connection_id))
        assert response.status_code == 408
        assert client.get("/destinations").json() == []

    def test_probe_reachable(self, client) -> None:
        """Test that a successful connection test answers 200 and saves nothing."""
        connection_id = create_connection(client)
        with patch("pgbackup_api.routers.destinations.S3Storage.test_connection", return_value=True):
            response = client.post("/destinations?test_connection=true", json=destination_payload(connection_id))
        assert response.status_code == 200
        assert response.json()["message"] == "Connection test successful"
        assert client.get("/destinations").json() == []

    def test_filter_by_connection(self, client) -> None:
        """Test listing destinations of one connection."""
        first = create_connection(client)
        second = create_connection(client)
        client.post("/destinations", json=destination_payload(first, "a"))
        client.post("/destinations", json=destination_payload(second, "b"))

        names = [d["name"] for d in client.get(f"/destinations?connection_id={second}").json()]
        assert names == ["b"]


class TestSchedules:
    """Test cases for /schedules."""

    def test_lifecycle(self, client) -> None:
        """Test create, disable, enable and delete against the live registry."""
        connection_id = create_connection(client)

        response = client.post("/schedules", json={"connection_id": connection_id, "schedule": "0 0 1 1 *"})
        assert response.status_code == 201
        schedule = response.json()
        assert schedule["enabled"] is True
        assert schedule["next_run"] is not None
        assert client.get("/schedules/status").json()["entries"] == 1

        disabled = client.post(f"/schedules/{schedule['id']}/disable").json()
        assert disabled["next_run"] is None
        assert client.get("/schedules/status").json()["entries"] == 0

        client.post(f"/schedules/{schedule['id']}/enable")
        assert client.get("/schedules/status").json()["entries"] == 1

        assert client.delete(f"/schedules/{schedule['id']}").status_code == 204
        assert client.get("/schedules/status").json()["entries"] == 0

    def test_invalid_expression(self, client) -> None:
        """Test that an invalid cron expression is a 400."""
        connection_id = create_connection(client)
        response = client.post("/schedules", json={"connection_id": connection_id, "schedule": "every day"})
        assert response.status_code == 400

    def test_patch_ignores_unknown_fields(self, client) -> None:
        """Test that only allow-listed fields are applied."""
        connection_id = create_connection(client)
        schedule = client.post("/schedules", json={"connection_id": connection_id, "schedule": "0 0 1 1 *"}).json()

        response = client.patch(
            f"/schedules/{schedule['id']}",
            json={"schedule": "0 0 1 6 *", "last_run": "2000-01-01T00:00:00"},
        )

        assert response.status_code == 200
        assert response.json()["schedule"] == "0 0 1 6 *"
        assert response.json()["last_run"] is None


class TestBackups:
    """Test cases for /backups."""

    def test_list_empty_local(self, client) -> None:
        """Test listing a database with no local snapshots."""
        connection_id = create_connection(client)
        response = client.get(f"/backups/list?database_id={connection_id}")
        assert response.json() == {"status": "OK", "files": []}

    def test_invalid_destination(self, client) -> None:
        """Test that a destination that is neither local nor an id is a 400."""
        connection_id = create_connection(client)
        response = client.get(f"/backups/list?database_id={connection_id}&backup_destination=somewhere")
        assert response.status_code == 400

    def test_create_backup(self, client) -> None:
        """Test that the filename of a new snapshot is returned."""
        connection_id = create_connection(client)
        with patch("pgbackup_api.routers.backups.BackupManager.create_backup",
                   return_value="backup_20240101_000000.dump"):
            response = client.post("/backups/create", json={"database_id": connection_id})
        assert response.json() == {"status": "OK", "backup_filename": "backup_20240101_000000.dump"}

    def test_delete_missing(self, client) -> None:
        """Test that deleting an unknown snapshot is a 404."""
        connection_id = create_connection(client)
        response = client.delete(
            f"/backups/delete?database_id={connection_id}&destination=local&filename=backup_x.dump"
        )
        assert response.status_code == 404


class TestAuthentication:
    """Test cases for bearer-token authentication."""

    def test_requires_token(self, auth_client) -> None:
        """Test that protected routes refuse anonymous calls."""
        assert auth_client.get("/connections").status_code == 401

    def test_healthcheck_is_public(self, auth_client) -> None:
        """Test that liveness needs no token."""
        assert auth_client.get("/system/healthcheck").status_code == 200

    def test_login_flow(self, auth_client) -> None:
        """Test bootstrap user, login and an authorised call."""
        credentials = {"username": "admin", "password": "correct horse"}
        assert auth_client.post("/users", json=credentials).status_code == 201
        assert auth_client.post("/users", json={"username": "eve", "password": "x"}).status_code == 401

        token = auth_client.post("/users/login", json=credentials).json()["access_token"]
        response = auth_client.get("/connections", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 200

    def test_wrong_password(self, auth_client) -> None:
        """Test that a bad password is refused."""
        auth_client.post("/users", json={"username": "admin", "password": "correct horse"})
        response = auth_client.post("/users/login", json={"username": "admin", "password": "wrong"})
        assert response.status_code == 401

    def test_invalid_token(self, auth_client) -> None:
        """Test that a forged token is refused."""
        response = auth_client.get("/connections", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401
