import time
import zipfile
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import Mock

import platformdirs
import pytest
import requests

from releasekeeper.config import LauncherConfig
from releasekeeper.release.model import (
    BuildChannel,
    Profile,
    Release,
    ReleaseIdentifier,
    ReleaseMetadata,
)

_NETWORK_BLOCK_MSG = (
    "Network access is blocked during tests. Mock requests.* or Session.request."
)


def _block_network(*_args, **_kwargs):
    """
    Prevent network calls in tests by raising a RuntimeError.

    Raises:
        RuntimeError: with `_NETWORK_BLOCK_MSG` indicating that network access is blocked during tests.
    """
    raise RuntimeError(_NETWORK_BLOCK_MSG)


def pytest_configure(config):
    """Register the markers used across the suite."""
    config.addinivalue_line("markers", "unit: fast isolated unit test")
    config.addinivalue_line(
        "markers", "core_downloads: release catalog and installation core"
    )
    config.addinivalue_line("markers", "user_interface: command-line behaviour")


@pytest.fixture(autouse=True)
def _isolate_test_environment(tmp_path_factory, monkeypatch):
    """
    Create an isolated temporary XDG layout and point platformdirs at it.

    Also clears GITHUB_TOKEN and the log level override so the developer's
    environment never leaks into tests.
    """
    base = tmp_path_factory.mktemp("releasekeeper")
    cache_dir = base / "cache"
    state_dir = base / "state"
    config_dir = base / "config"
    data_dir = base / "data"
    log_dir = state_dir / "log"

    for path in (cache_dir, state_dir, config_dir, data_dir, log_dir):
        path.mkdir(parents=True, exist_ok=True)

    monkeypatch.setenv("XDG_CACHE_HOME", str(cache_dir))
    monkeypatch.setenv("XDG_STATE_HOME", str(state_dir))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(config_dir))
    monkeypatch.setenv("XDG_DATA_HOME", str(data_dir))
    monkeypatch.delenv("GITHUB_TOKEN", raising=False)
    monkeypatch.delenv("RELEASEKEEPER_LOG_LEVEL", raising=False)

    monkeypatch.setattr(
        platformdirs, "user_cache_dir", lambda *_args, **_kwargs: str(cache_dir)
    )
    monkeypatch.setattr(
        platformdirs, "user_state_dir", lambda *_args, **_kwargs: str(state_dir)
    )
    monkeypatch.setattr(
        platformdirs, "user_config_dir", lambda *_args, **_kwargs: str(config_dir)
    )
    monkeypatch.setattr(
        platformdirs, "user_data_dir", lambda *_args, **_kwargs: str(data_dir)
    )
    monkeypatch.setattr(
        platformdirs, "user_log_dir", lambda *_args, **_kwargs: str(log_dir)
    )


def pytest_runtest_setup():
    """
    Prevent real network requests during tests by replacing HTTP entry points with blocking callables.
    """
    requests.get = _block_network
    requests.post = _block_network
    requests.put = _block_network
    requests.delete = _block_network
    requests.head = _block_network
    requests.patch = _block_network
    requests.options = _block_network
    requests.Session.request = _block_network


@pytest.fixture(autouse=True)
def _mock_time_sleep(monkeypatch):
    """
    Make time.sleep instant for all tests to prevent delays.
    """
    monkeypatch.setattr(time, "sleep", lambda *_args, **_kwargs: None)


# =============================================================================
# Shared builders
# =============================================================================


def make_release(
    version="1.0.0",
    channel=BuildChannel.STABLE,
    profile=Profile.FULL,
    url="https://example.com/Terasology.zip",
    changelog=("Initial release",),
    engine_version=None,
):
    """Build a Release with sensible defaults for tests."""
    return Release(
        ReleaseIdentifier(version, channel, profile, engine_version),
        url,
        ReleaseMetadata(
            changelog=tuple(changelog),
            published_at=datetime(2020, 5, 1, tzinfo=timezone.utc),
            is_compatible_binary_format=True,
        ),
    )


def make_game_zip(path: Path, files=None) -> bytes:
    """Write a small game archive to `path` and return its bytes."""
    files = files or {
        "Terasology/libs/engine.jar": b"engine",
        "Terasology/run.sh": b"#!/bin/sh\necho run\n",
    }
    path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(path, "w") as zf:
        for name, content in files.items():
            zf.writestr(name, content)
    return path.read_bytes()


def mock_response(
    json_data=None, text="", status_code=200, headers=None, chunks=None
):
    """Create a Mock mimicking a requests.Response."""
    response = Mock()
    response.status_code = status_code
    response.headers = headers or {}
    response.text = text
    response.json.return_value = json_data
    if status_code >= 400:
        error = requests.HTTPError(f"{status_code} Error", response=response)
        response.raise_for_status.side_effect = error
    else:
        response.raise_for_status.return_value = None
    response.iter_content.return_value = iter(chunks or [])
    return response


@pytest.fixture
def launcher_config(tmp_path):
    """LauncherConfig rooted in the test's temporary directory."""
    return LauncherConfig(
        install_dir=str(tmp_path / "games"),
        cache_dir=str(tmp_path / "cache"),
    )
