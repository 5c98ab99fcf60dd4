"""
Configuration management for npmdex.

Settings come from defaults, an optional project or user config file
(TOML or JSON) and NPMDEX_* environment variables, in that order.
"""

import json
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import toml
from rich.console import Console

console = Console(stderr=True)


@dataclass
class NetworkConfig:
    """Registry and HTTP configuration."""

    registry_url: str = "https://registry.npmjs.org"
    user_agent: str = "npmdex/1.0.0"
    connect_timeout: float = 10.0
    read_timeout: float = 30.0
    rate_limit: float = 10.0
    max_concurrent: int = 8
    search_limit: int = 20
    registry_token: Optional[str] = None


@dataclass
class ProcessConfig:
    """npm invocation configuration."""

    npm_executable: str = "npm"
    command_timeout_seconds: float = 300.0
    audit_timeout_seconds: float = 120.0
    tree_timeout_seconds: float = 60.0


@dataclass
class LicenseConfig:
    """License compliance configuration."""

    # Identifiers accepted in addition to the built-in table
    extra_allowed: List[str] = field(default_factory=list)


@dataclass
class LoggingConfig:
    """Logging configuration."""

    log_level: str = "WARNING"
    enable_sensitive_data_masking: bool = True


@dataclass
class NpmDexConfig:
    """Main configuration containing all subsections."""

    network: NetworkConfig = field(default_factory=NetworkConfig)
    process: ProcessConfig = field(default_factory=ProcessConfig)
    licenses: LicenseConfig = field(default_factory=LicenseConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


_global_config: Optional[NpmDexConfig] = None


def _expected_type(default: Any) -> Tuple[type, ...]:
    if isinstance(default, bool):
        return (bool,)
    if isinstance(default, float):
        return (int, float)
    if default is None:
        return (str, type(None))
    return (type(default),)


def _type_errors(config: NpmDexConfig) -> List[str]:
    """Report settings whose type differs from the default's."""
    errors = []
    defaults = NpmDexConfig()
    for section_name in ("network", "process", "licenses", "logging"):
        section = getattr(config, section_name)
        for item in fields(section):
            value = getattr(section, item.name)
            expected = _expected_type(getattr(getattr(defaults, section_name), item.name))
            # bool is an int subclass but never a valid number here
            if isinstance(value, bool) and bool not in expected:
                wrong = True
            else:
                wrong = not isinstance(value, expected)
            if wrong:
                names = " or ".join(t.__name__ for t in expected if t is not type(None))
                errors.append(f"{section_name}.{item.name} must be {names}, got {value!r}")
    return errors


def validate_config_values(config: NpmDexConfig) -> List[str]:
    """
    Validate configuration values and return any errors.

    Returns:
        List[str]: List of validation errors (empty if valid)
    """
    errors = _type_errors(config)
    mistyped = {error.split(" ", 1)[0] for error in errors}

    def check(path: str, ok: Callable[[], bool], message: str) -> None:
        if path not in mistyped and not ok():
            errors.append(f"{path} {message}")

    network = config.network
    check(
        "network.registry_url",
        lambda: network.registry_url.startswith(("http://", "https://")),
        "must be an http(s) URL",
    )
    for name in ("connect_timeout", "read_timeout", "rate_limit", "max_concurrent", "search_limit"):
        check(f"network.{name}", lambda name=name: getattr(network, name) > 0, "must be positive")

    check("process.npm_executable", lambda: bool(config.process.npm_executable), "must not be empty")
    for name in ("command_timeout_seconds", "audit_timeout_seconds", "tree_timeout_seconds"):
        check(
            f"process.{name}", lambda name=name: getattr(config.process, name) > 0, "must be positive"
        )

    check(
        "logging.log_level",
        lambda: config.logging.log_level.upper() in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"},
        f"is not a valid level: {config.logging.log_level}",
    )

    return errors


def load_config_file(config_path: Path) -> Optional[Dict[str, Any]]:
    """Load config from a TOML or JSON file."""
    if not config_path.exists():
        return None

    try:
        with open(config_path, encoding="utf-8") as f:
            if config_path.suffix.lower() == ".toml":
                return toml.load(f)
            elif config_path.suffix.lower() == ".json":
                return json.load(f)
    except (OSError, ValueError, toml.TomlDecodeError) as e:
        console.print(f"⚠️  Error loading config from {config_path}: {e}", style="yellow")

    return None


def find_config_file() -> Optional[Path]:
    """Find config file in standard locations."""
    locations = [
        Path.cwd() / ".npmdex.toml",
        Path.cwd() / ".npmdex.json",
        Path.home() / ".config" / "npmdex" / "config.toml",
        Path.home() / ".config" / "npmdex" / "config.json",
    ]

    for location in locations:
        if location.exists():
            return location

    return None


def apply_config_section(config: Any, section_data: Dict[str, Any], section_name: str) -> None:
    """Apply configuration from dictionary to config section."""
    if not isinstance(section_data, dict):
        console.print(f"⚠️  Config section {section_name} is not a table, ignoring it", style="yellow")
        return
    for key, value in section_data.items():
        if hasattr(config, key):
            setattr(config, key, value)
        else:
            console.print(f"⚠️  Unknown config key in {section_name}: {key}", style="yellow")


def load_environment_overrides(config: NpmDexConfig) -> None:
    """Apply NPMDEX_* environment variable overrides."""

    def get_env_int(key: str) -> Optional[int]:
        try:
            return int(os.environ[key]) if key in os.environ else None
        except ValueError:
            console.print(f"⚠️  Invalid integer value for {key}, using default", style="yellow")
            return None

    def get_env_float(key: str) -> Optional[float]:
        try:
            return float(os.environ[key]) if key in os.environ else None
        except ValueError:
            console.print(f"⚠️  Invalid float value for {key}, using default", style="yellow")
            return None

    if registry_url := os.environ.get("NPMDEX_REGISTRY_URL"):
        config.network.registry_url = registry_url.rstrip("/")
    if token := os.environ.get("NPMDEX_REGISTRY_TOKEN") or os.environ.get("NPM_TOKEN"):
        config.network.registry_token = token
    if user_agent := os.environ.get("NPMDEX_USER_AGENT"):
        config.network.user_agent = user_agent
    if connect_timeout := get_env_float("NPMDEX_CONNECT_TIMEOUT"):
        config.network.connect_timeout = connect_timeout
    if read_timeout := get_env_float("NPMDEX_READ_TIMEOUT"):
        config.network.read_timeout = read_timeout
    if rate_limit := get_env_float("NPMDEX_RATE_LIMIT"):
        config.network.rate_limit = rate_limit
    if max_concurrent := get_env_int("NPMDEX_MAX_CONCURRENT"):
        config.network.max_concurrent = max_concurrent

    if npm_executable := os.environ.get("NPMDEX_NPM"):
        config.process.npm_executable = npm_executable
    if command_timeout := get_env_float("NPMDEX_COMMAND_TIMEOUT"):
        config.process.command_timeout_seconds = command_timeout

    if extra := os.environ.get("NPMDEX_EXTRA_LICENSES"):
        config.licenses.extra_allowed = [item.strip() for item in extra.split(",") if item.strip()]

    if log_level := os.environ.get("NPMDEX_LOG_LEVEL"):
        config.logging.log_level = log_level.upper()


def load_config(config_path: Optional[Path] = None) -> NpmDexConfig:
    """Load configuration from file and environment."""
    global _global_config

    config = NpmDexConfig()

    config_file = config_path or find_config_file()
    if config_file:
        file_config = load_config_file(config_file)
        if file_config:
            for section_name in ("network", "process", "licenses", "logging"):
                if section_name in file_config:
                    apply_config_section(
                        getattr(config, section_name), file_config[section_name], section_name
                    )

    load_environment_overrides(config)

    validation_errors = validate_config_values(config)
    if validation_errors:
        console.print("⚠️  Configuration validation errors:", style="red")
        for error in validation_errors:
            console.print(f"  • {error}", style="red")
        console.print("Using default values for invalid settings.", style="yellow")
        config = _defaults_for_invalid(config, validation_errors)

    _global_config = config
    return config


def _defaults_for_invalid(config: NpmDexConfig, errors: List[str]) -> NpmDexConfig:
    defaults = NpmDexConfig()
    for error in errors:
        section_name, _, rest = error.partition(".")
        key = rest.split(" ", 1)[0]
        section = getattr(config, section_name, None)
        if section is not None and hasattr(section, key):
            setattr(section, key, getattr(getattr(defaults, section_name), key))
    return config


def get_config() -> NpmDexConfig:
    """Get the global configuration instance."""
    global _global_config
    if _global_config is None:
        _global_config = load_config()
    return _global_config


def reset_config() -> None:
    """Reset the global configuration (useful for testing)."""
    global _global_config
    _global_config = None


def create_sample_config() -> str:
    """Generate a sample TOML configuration."""
    sample_config = {
        "network": {
            "registry_url": "https://registry.npmjs.org",
            "connect_timeout": 10.0,
            "read_timeout": 30.0,
            "rate_limit": 10.0,
            "max_concurrent": 8,
            "search_limit": 20,
        },
        "process": {
            "npm_executable": "npm",
            "command_timeout_seconds": 300.0,
            "audit_timeout_seconds": 120.0,
            "tree_timeout_seconds": 60.0,
        },
        "licenses": {"extra_allowed": []},
        "logging": {"log_level": "WARNING"},
    }
    return toml.dumps(sample_config)
