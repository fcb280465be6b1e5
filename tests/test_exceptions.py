import pytest

from releasekeeper.exceptions import (
    ConfigurationError,
    ExtractionError,
    InstallationError,
    InsufficientSpaceError,
    MissingArtifactError,
    NotInstalledError,
    ReleasekeeperError,
    RemoteFetchError,
    RemovalError,
    TransferError,
)
from releasekeeper.release.model import BuildChannel, Profile, ReleaseIdentifier

pytestmark = [pytest.mark.unit]


class TestReleasekeeperError:
    def test_message_only(self):
        error = ReleasekeeperError("Something failed")
        assert str(error) == "Something failed"
        assert error.details is None

    def test_message_with_details(self):
        error = ReleasekeeperError("Something failed", "disk on fire")
        assert str(error) == "Something failed - disk on fire"


@pytest.mark.parametrize(
    "error_cls",
    [NotInstalledError, InsufficientSpaceError, TransferError, ExtractionError, RemovalError],
)
def test_installation_errors_share_base(error_cls):
    assert issubclass(error_cls, InstallationError)
    assert issubclass(error_cls, ReleasekeeperError)


def test_catalog_and_config_errors_are_not_installation_errors():
    for error_cls in (RemoteFetchError, MissingArtifactError, ConfigurationError):
        assert issubclass(error_cls, ReleasekeeperError)
        assert not issubclass(error_cls, InstallationError)


def test_remote_fetch_error_attributes():
    error = RemoteFetchError("HTTP error", url="http://ci/api/json", status_code=503, details="busy")

    assert error.url == "http://ci/api/json"
    assert error.status_code == 503
    assert str(error) == "HTTP error - busy"


def test_missing_artifact_error_mentions_pattern():
    error = MissingArtifactError("No archive", build_url="http://ci/job/x/1/", pattern="Terasology.*zip")

    assert error.build_url == "http://ci/job/x/1/"
    assert str(error) == "No archive - pattern: Terasology.*zip"


def test_not_installed_error_names_identifier():
    identifier = ReleaseIdentifier("5.1.0", BuildChannel.STABLE, Profile.FULL)
    error = NotInstalledError(identifier)

    assert error.identifier == identifier
    assert "FULL/STABLE/5.1.0" in str(error)


def test_insufficient_space_error_reports_sizes():
    error = InsufficientSpaceError(2048, 1024, "/cache")

    assert (error.required, error.available, error.path) == (2048, 1024, "/cache")
    assert "required 2048 bytes" in str(error)
