"""Tests for legismcp.config — option loading and precedence."""

import pytest
from pydantic import ValidationError

from legismcp import __version__
from legismcp.config import ENV_OPTIONS, ClientOptions, get_user_config, load_options


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_OPTIONS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def no_user_config(tmp_path):
    return tmp_path / "missing.py"


class TestClientOptions:
    def test_defaults(self):
        options = ClientOptions(server_url="https://api.example.com/mcp")
        assert options.request_timeout == 30.0
        assert options.retry_attempts == 3
        assert options.retry_delay == 1.0
        assert options.session_header == "Mcp-Session-Id"
        assert options.client_version == __version__
        assert options.api_key is None

    @pytest.mark.parametrize("url", ["ws://api.example.com", "not a url", "https://"])
    def test_rejects_bad_url(self, url):
        with pytest.raises(ValidationError):
            ClientOptions(server_url=url)

    @pytest.mark.parametrize("field, value", [
        ("request_timeout", 0),
        ("retry_attempts", -1),
        ("retry_delay", -0.5),
    ])
    def test_rejects_bad_numbers(self, field, value):
        with pytest.raises(ValidationError):
            ClientOptions(server_url="https://api.example.com/mcp", **{field: value})


class TestLoadOptions:
    def test_environment(self, monkeypatch, no_user_config):
        monkeypatch.setenv("LEGISMCP_SERVER_URL", "https://env.example.com/mcp")
        monkeypatch.setenv("LEGISMCP_API_KEY", "sk-env")
        monkeypatch.setenv("LEGISMCP_RETRY_ATTEMPTS", "5")
        monkeypatch.setenv("LEGISMCP_REQUEST_TIMEOUT", "12.5")
        options = load_options(no_user_config)
        assert options.server_url == "https://env.example.com/mcp"
        assert options.api_key == "sk-env"
        assert options.retry_attempts == 5
        assert options.request_timeout == 12.5

    def test_user_config_beats_environment(self, monkeypatch, tmp_path):
        monkeypatch.setenv("LEGISMCP_SERVER_URL", "https://env.example.com/mcp")
        monkeypatch.setenv("LEGISMCP_API_KEY", "sk-env")
        config = tmp_path / "config.py"
        config.write_text('server_url = "https://file.example.com/mcp"\nretry_delay = 0.25\n')
        options = load_options(config)
        assert options.server_url == "https://file.example.com/mcp"
        assert options.api_key == "sk-env"
        assert options.retry_delay == 0.25

    def test_overrides_win_and_none_is_ignored(self, monkeypatch, no_user_config):
        monkeypatch.setenv("LEGISMCP_SERVER_URL", "https://env.example.com/mcp")
        monkeypatch.setenv("LEGISMCP_API_KEY", "sk-env")
        options = load_options(no_user_config, server_url="https://cli.example.com/mcp", api_key=None)
        assert options.server_url == "https://cli.example.com/mcp"
        assert options.api_key == "sk-env"

    def test_missing_server_url(self, no_user_config):
        with pytest.raises(ValidationError):
            load_options(no_user_config)


class TestUserConfig:
    def test_missing_file(self, tmp_path):
        assert get_user_config(tmp_path / "nope.py") is None

    def test_broken_file_warns(self, tmp_path, capsys):
        config = tmp_path / "config.py"
        config.write_text("raise RuntimeError('bad config')\n")
        assert get_user_config(config) is None
        assert "Failed to load user config" in capsys.readouterr().err
