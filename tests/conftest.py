from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from gridwatch.core.config import Settings
from gridwatch.core.security import get_password_hash
from gridwatch.factory import create_app
from gridwatch.models.topology import Topology
from gridwatch.services.monitor import PMUMonitorService
from tests.fakes import FakeHistorianClient, ManualScheduler, make_point, make_topology


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        _env_file=None,
        env="test",
        debug=True,
        docs_enabled=False,
        log_level="DEBUG",
        secret_key="test_secret_key_must_be_32_chars_minimum",
        admin_username="admin",
        admin_password_hash=get_password_hash("password"),
        cors_origins=["http://localhost"],
        trusted_hosts=["testserver", "localhost"],
        topology_source="does-not-exist.xml",
        poll_interval_seconds=5.0,
        polling_autostart=True,
    )


@pytest.fixture()
def topology() -> Topology:
    return make_topology(
        make_point("PMU_A", frequency=10, rocof=13, magnitude=11, angle=12, area="S"),
        make_point("PMU_B", frequency=20, rocof=23, magnitude=21, angle=22, area="SE"),
    )


@pytest.fixture()
def historian() -> FakeHistorianClient:
    return FakeHistorianClient({10: 60.01, 11: 130.0, 12: 5.0})


@pytest.fixture()
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture()
def monitor(
    settings: Settings,
    topology: Topology,
    historian: FakeHistorianClient,
    scheduler: ManualScheduler,
) -> PMUMonitorService:
    return PMUMonitorService.create(
        settings, topology=topology, historian=historian, scheduler=scheduler
    )


@pytest.fixture()
def client(settings: Settings, monitor: PMUMonitorService) -> TestClient:
    app = create_app(settings, monitor=monitor)
    with TestClient(app) as client:
        yield client


@pytest.fixture()
def token(client: TestClient) -> str:
    resp = client.post(
        "/api/v1/auth/token",
        data={"username": "admin", "password": "password"},
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )
    assert resp.status_code == 200, resp.text
    return resp.json()["access_token"]
