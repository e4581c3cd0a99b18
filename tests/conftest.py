from __future__ import annotations

import time
from datetime import datetime, timedelta, timezone
from importlib import resources
from pathlib import Path
from typing import Callable

import pytest
from typer.testing import CliRunner

from lifestream.cli.main import app


class FakeClock:
    """Manually advanced clock for strategy and scheduler tests."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


def wait_for(condition: Callable[[], bool], timeout: float = 5.0, interval: float = 0.01) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(interval)
    return condition()


@pytest.fixture(scope="session")
def registry_file() -> Path:
    with resources.as_file(resources.files("lifestream.resources.services") / "default.yaml") as ref:
        return Path(ref)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def cli_runner() -> CliRunner:
    return CliRunner()


@pytest.fixture()
def cli_app():
    return app


@pytest.fixture()
def wait() -> Callable[..., bool]:
    return wait_for
