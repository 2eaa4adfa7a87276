"""Configuration loading from YAML files with environment variable support."""

import logging
import os
import re
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml
from dotenv import dotenv_values

from .core.exceptions import ConfigurationError

logger = logging.getLogger("cliproxy")

# Default path to the config file (relative to project root)
DEFAULT_CONFIG_PATH = "configs/config_default.yaml"

_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}|\$([A-Za-z_][A-Za-z0-9_]*)")
_SECRET_MARKERS = ("key", "secret", "token", "password")
_TRUE_VALUES = {"1", "true", "yes", "on"}


def config_path_from_env() -> str:
    return os.getenv("CLIPROXY_CONFIG") or DEFAULT_CONFIG_PATH


def resolve_config_path(path: str) -> Path:
    """Resolve config path relative to project root if needed."""
    if Path(path).is_absolute():
        return Path(path)
    project_root = Path(__file__).parent.parent
    return project_root / path


def resolve_env_path(config_path: Path, env_path: str | None = None) -> Path:
    """Resolve the env file path for a config file."""
    if env_path:
        return resolve_config_path(env_path)
    stem = config_path.stem
    if stem.startswith("config_"):
        suffix = stem[len("config_"):]
        return config_path.with_name(f".env_{suffix}")
    return config_path.with_name(".env")


def load_env_values(env_path: Path) -> dict[str, str]:
    """Load environment values from a .env file without mutating os.environ."""
    if not env_path.exists():
        return {}
    raw_values = dotenv_values(env_path)
    return {key: value for key, value in raw_values.items() if value is not None}


def load_config(
    path: str | None = None,
    env_path: str | None = None,
    substitute_env: bool = True,
) -> dict:
    """Load configuration from a YAML file.

    Args:
        path: Path to the config file. Defaults to CLIPROXY_CONFIG,
              or configs/config_default.yaml in the project root.
        env_path: Optional .env path override for env substitution.
        substitute_env: Whether to substitute environment variables in the config.

    Returns:
        Parsed configuration dictionary.
    """
    if path is None:
        path = config_path_from_env()

    config_path = resolve_config_path(path)

    logger.info(f"Loading configuration from {config_path}")

    if not config_path.exists():
        logger.error(f"Config file not found: {config_path}")
        raise RuntimeError(f"Config file not found: {config_path}")

    env_values: dict[str, str] = {}
    if substitute_env:
        env_file = resolve_env_path(config_path, env_path)
        if env_file.exists():
            logger.info(f"Loading environment variables from {env_file}")
            env_values = load_env_values(env_file)

    with config_path.open("r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or {}

    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file must contain a mapping: {config_path}")

    if substitute_env:
        data = _substitute_env_vars(data, env_values)

    logger.info(f"Configuration loaded successfully from {config_path}")
    return data


def _substitute_env_vars(
    obj: Any, env_values: Mapping[str, str] | None = None
) -> Any:
    """Recursively substitute environment variables in configuration values.

    Supports two formats:
    - ${VAR_NAME}: Braced format
    - $VAR_NAME: Simple format

    Values from the .env file win over the process environment. Unresolved
    placeholders are left in place and reported.
    """
    env_values = env_values or {}

    if isinstance(obj, dict):
        return {k: _substitute_env_vars(v, env_values) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_substitute_env_vars(item, env_values) for item in obj]
    if isinstance(obj, str):

        def replace_var(match):
            var_name = match.group(1) or match.group(2)
            value = env_values.get(var_name)
            if value is None:
                value = os.getenv(var_name)
            if value is None:
                logger.warning(
                    f"CONFIG ERROR: Environment variable '${var_name}' is not set! "
                    f"Check your .env file or export it in your shell. "
                    f"The literal placeholder will be used."
                )
                return match.group(0)
            return value

        return _ENV_PATTERN.sub(replace_var, obj)
    return obj


def default_cli_path() -> str:
    # On Windows the npm shim is a .cmd file
    if sys.platform == "win32":
        return "claude.cmd"
    return "claude"


def _as_bool(value: Any, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUE_VALUES


def _as_str_list(value: Any, name: str) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    if isinstance(value, list):
        return [str(item) for item in value]
    raise ConfigurationError(f"{name} must be a list of strings")


def _parse_port(value: Any) -> int:
    try:
        port = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid port: {value!r}") from exc
    if port < 1 or port > 65535:
        raise ConfigurationError(f"Invalid port: {port}. Must be between 1 and 65535.")
    return port


def _section(config: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    value = config.get(name) or {}
    if not isinstance(value, Mapping):
        raise ConfigurationError(f"Config section '{name}' must be a mapping")
    return value


@dataclass
class BridgeSettings:
    """Resolved runtime settings of the bridge."""

    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: list[str] = field(default_factory=lambda: ["*"])
    debug: bool = False
    file_logging: bool = False
    log_dir: Optional[str] = None
    cli_path: str = field(default_factory=default_cli_path)
    cli_cwd: str = field(default_factory=os.getcwd)
    cli_env: dict[str, str] = field(default_factory=dict)
    max_turns: Optional[int] = None
    allowed_tools: list[str] = field(default_factory=list)
    disallowed_tools: list[str] = field(default_factory=list)
    permission_mode: Optional[str] = None
    pass_model: bool = False
    kill_on_disconnect: bool = False
    verify_on_startup: bool = False
    models: list[str] = field(default_factory=lambda: ["any"])
    allow_request_tools: bool = False

    @classmethod
    def from_config(
        cls,
        config: Mapping[str, Any],
        environ: Optional[Mapping[str, str]] = None,
    ) -> "BridgeSettings":
        """Build settings from a loaded config; environment variables win."""
        environ = os.environ if environ is None else environ
        server = _section(config, "server")
        logging_cfg = _section(config, "logging")
        cli = _section(config, "cli")
        tools = _section(config, "tools")

        max_turns = cli.get("max_turns")
        if max_turns is not None:
            try:
                max_turns = int(max_turns)
            except (TypeError, ValueError) as exc:
                raise ConfigurationError(f"cli.max_turns must be an integer: {max_turns!r}") from exc
            if max_turns < 1:
                raise ConfigurationError("cli.max_turns must be positive")

        cli_env = cli.get("env") or {}
        if not isinstance(cli_env, Mapping):
            raise ConfigurationError("cli.env must be a mapping")

        models = _as_str_list(config.get("models"), "models") or ["any"]

        settings = cls(
            host=str(server.get("host", "0.0.0.0")),
            port=_parse_port(server.get("port", 8000)),
            cors_origins=_as_str_list(server.get("cors_origins"), "server.cors_origins") or ["*"],
            debug=_as_bool(logging_cfg.get("debug")),
            file_logging=_as_bool(logging_cfg.get("file_logging")),
            log_dir=logging_cfg.get("log_dir") or None,
            cli_path=str(cli.get("path") or default_cli_path()),
            cli_cwd=str(cli.get("cwd") or os.getcwd()),
            cli_env={str(k): str(v) for k, v in cli_env.items()},
            max_turns=max_turns,
            allowed_tools=_as_str_list(cli.get("allowed_tools"), "cli.allowed_tools"),
            disallowed_tools=_as_str_list(cli.get("disallowed_tools"), "cli.disallowed_tools"),
            permission_mode=cli.get("permission_mode") or None,
            pass_model=_as_bool(cli.get("pass_model")),
            kill_on_disconnect=_as_bool(cli.get("kill_on_disconnect")),
            verify_on_startup=_as_bool(cli.get("verify_on_startup")),
            models=models,
            allow_request_tools=_as_bool(tools.get("allow_request_tools")),
        )
        settings.apply_env_overrides(environ)
        return settings

    def apply_env_overrides(self, environ: Mapping[str, str]) -> None:
        """Environment variables take priority over the config file."""
        if environ.get("CLIPROXY_HOST"):
            self.host = environ["CLIPROXY_HOST"]
        if environ.get("CLIPROXY_PORT"):
            self.port = _parse_port(environ["CLIPROXY_PORT"])
        if environ.get("CLIPROXY_DEBUG") is not None:
            self.debug = _as_bool(environ["CLIPROXY_DEBUG"])
        if environ.get("CLIPROXY_FILE_LOGGING") is not None:
            self.file_logging = _as_bool(environ["CLIPROXY_FILE_LOGGING"])
        if environ.get("CLIPROXY_CLI_PATH"):
            self.cli_path = environ["CLIPROXY_CLI_PATH"]

    def describe(self) -> dict[str, Any]:
        """Settings as a dict with secret-looking env values masked."""
        data = {
            "host": self.host,
            "port": self.port,
            "cors_origins": list(self.cors_origins),
            "debug": self.debug,
            "file_logging": self.file_logging,
            "log_dir": self.log_dir,
            "cli_path": self.cli_path,
            "cli_cwd": self.cli_cwd,
            "cli_env": {
                key: _mask_secret(value) if _looks_secret(key) else value
                for key, value in self.cli_env.items()
            },
            "max_turns": self.max_turns,
            "allowed_tools": list(self.allowed_tools),
            "disallowed_tools": list(self.disallowed_tools),
            "permission_mode": self.permission_mode,
            "pass_model": self.pass_model,
            "kill_on_disconnect": self.kill_on_disconnect,
            "verify_on_startup": self.verify_on_startup,
            "models": list(self.models),
            "allow_request_tools": self.allow_request_tools,
        }
        return data


def _looks_secret(name: str) -> bool:
    lowered = name.lower()
    return any(marker in lowered for marker in _SECRET_MARKERS)


def _mask_secret(value: str) -> str:
    if not value:
        return value
    return value[:3] + "****" if len(value) > 3 else "****"


def load_settings(path: str | None = None) -> BridgeSettings:
    """Load the config file and resolve it into settings."""
    return BridgeSettings.from_config(load_config(path))
