import os

import pytest

from releasekeeper.config import default_config, get_config_file_path, load_config
from releasekeeper.constants import DEFAULT_GITHUB_REPOSITORY
from releasekeeper.exceptions import ConfigurationError

pytestmark = [pytest.mark.unit]


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "releasekeeper.yaml"

    def write(text):
        path.write_text(text, encoding="utf-8")
        return str(path)

    return write


def test_missing_file_gives_platform_defaults():
    config = load_config()

    assert config == default_config()
    assert config.install_dir.endswith(os.path.join("data", "games"))
    assert config.keep_downloaded_files is True
    assert config.github_repository == DEFAULT_GITHUB_REPOSITORY
    assert config.github_token is None


def test_default_path_lives_in_user_config_dir():
    assert get_config_file_path().endswith(os.path.join("config", "releasekeeper.yaml"))


def test_values_override_defaults(config_file, tmp_path):
    path = config_file(
        f"INSTALL_DIR: {tmp_path / 'games'}\n"
        "CACHE_DIR: ~/releasekeeper-cache\n"
        "KEEP_DOWNLOADED_FILES: false\n"
        "GITHUB_REPOSITORY: example/game\n"
        "REQUEST_TIMEOUT: 12.5\n"
        "PRODUCT_ID: game\n"
    )

    config = load_config(path)

    assert config.install_dir == str(tmp_path / "games")
    assert config.cache_dir == os.path.expanduser("~/releasekeeper-cache")
    assert config.keep_downloaded_files is False
    assert config.github_repository == "example/game"
    assert config.request_timeout == 12.5
    assert config.product_id == "game"


def test_empty_file_gives_defaults(config_file):
    assert load_config(config_file("")) == default_config()


def test_token_falls_back_to_environment(config_file, monkeypatch):
    monkeypatch.setenv("GITHUB_TOKEN", " env-token ")

    assert load_config(config_file("GITHUB_TOKEN:\n")).github_token == "env-token"


def test_file_token_wins_over_environment(config_file, monkeypatch):
    monkeypatch.setenv("GITHUB_TOKEN", "env-token")

    assert load_config(config_file("GITHUB_TOKEN: file-token\n")).github_token == "file-token"


@pytest.mark.parametrize(
    "text",
    [
        "INSTALL_DIR: [a, b]\n",
        "KEEP_DOWNLOADED_FILES: yes please\n",
        "REQUEST_TIMEOUT: true\n",
        "REQUEST_TIMEOUT: 0\n",
        "- just\n- a list\n",
        "INSTALL_DIR: [unclosed\n",
    ],
)
def test_invalid_files_raise(config_file, text):
    with pytest.raises(ConfigurationError):
        load_config(config_file(text))
