"""Client options and user configuration loading for legismcp."""

import importlib.util
import os
import sys
from pathlib import Path
from typing import Any, Optional
from urllib.parse import urlparse

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

from .transport import SESSION_HEADER

_CONFIG_NOT_FOUND = object()
_user_config = None

CONFIG_PATH = Path.home() / ".legismcp" / "config.py"

# Environment variable -> option name
ENV_OPTIONS = {
    'LEGISMCP_SERVER_URL': 'server_url',
    'LEGISMCP_API_KEY': 'api_key',
    'LEGISMCP_ACCESS_TOKEN': 'access_token',
    'LEGISMCP_REQUEST_TIMEOUT': 'request_timeout',
    'LEGISMCP_RETRY_ATTEMPTS': 'retry_attempts',
    'LEGISMCP_RETRY_DELAY': 'retry_delay',
}


def _package_version() -> str:
    from . import __version__
    return __version__


class ClientOptions(BaseModel):
    server_url: str
    api_key: Optional[str] = None
    access_token: Optional[str] = None
    request_timeout: float = Field(30.0, gt=0)
    retry_attempts: int = Field(3, ge=0)
    retry_delay: float = Field(1.0, ge=0)
    client_name: str = "LegisMCP Python Client"
    client_version: str = Field(default_factory=_package_version)
    session_header: str = SESSION_HEADER

    @field_validator('server_url')
    @classmethod
    def _check_url(cls, value: str) -> str:
        parsed = urlparse(value)
        if parsed.scheme not in ('http', 'https') or not parsed.hostname:
            raise ValueError(f"server_url must be an http(s) URL, got {value!r}")
        return value


def get_user_config(path: Optional[Path] = None):
    """Load ~/.legismcp/config.py once and return it as a module, or None."""
    global _user_config

    if path is None and _user_config is not None:
        return None if _user_config is _CONFIG_NOT_FOUND else _user_config

    config_path = path or CONFIG_PATH
    if not config_path.exists():
        if path is None:
            _user_config = _CONFIG_NOT_FOUND
        return None

    try:
        spec = importlib.util.spec_from_file_location("legismcp_user_config", config_path)
        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)
    except Exception as e:
        print(f"Warning: Failed to load user config from {config_path}: {e}", file=sys.stderr)
        module = None

    if path is None:
        _user_config = _CONFIG_NOT_FOUND if module is None else module
    return module


def load_options(config_path: Optional[Path] = None, **overrides: Any) -> ClientOptions:
    """
    Build ClientOptions from the environment, user config and overrides.

    Precedence: overrides > user config module > environment (.env included)
    > defaults. The user config module sets options as lowercase module-level
    names, e.g. ``server_url = "https://api.example.com/mcp"``.

    Raises:
        pydantic.ValidationError: If the resulting options are invalid.
    """
    load_dotenv()

    values: dict[str, Any] = {}
    for env_var, option in ENV_OPTIONS.items():
        if (value := os.getenv(env_var)) is not None:
            values[option] = value

    if user_config := get_user_config(config_path):
        for option in ClientOptions.model_fields:
            if hasattr(user_config, option):
                values[option] = getattr(user_config, option)

    values.update({k: v for k, v in overrides.items() if v is not None})
    return ClientOptions(**values)
