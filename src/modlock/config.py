"""
Configuration loading for modlock.

Settings come from an optional YAML file and from the Go toolchain's
environment variables. Environment values always override file values.
"""

import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

import platformdirs
import yaml

from modlock.constants import (
    APP_NAME,
    CACHE_DIR_ENV_VAR,
    CONFIG_FILE_NAME,
    DEFAULT_MAX_WORKERS,
    DEFAULT_PROXY,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_VCS_HOSTS,
    NETRC_ENV_VAR,
    NETRC_FILE_NAME,
    NOPROXY_ENV_VAR,
    PRIVATE_ENV_VAR,
    PROXY_DISABLED_VALUES,
    PROXY_ENV_VAR,
)
from modlock.exceptions import ConfigurationError
from modlock.log_utils import logger

CONFIG_DIR = platformdirs.user_config_dir(APP_NAME)
CONFIG_FILE = os.path.join(CONFIG_DIR, CONFIG_FILE_NAME)

_KNOWN_KEYS = {
    "proxy",
    "private",
    "cache_dir",
    "netrc",
    "request_timeout",
    "max_workers",
    "vcs_hosts",
    "use_go_list",
}


@dataclass
class FetchConfig:
    """Effective settings for resolving and fetching modules."""

    proxy: Optional[str] = DEFAULT_PROXY
    """Base URL of the module proxy, or None when the proxy is disabled"""

    private_patterns: List[str] = field(default_factory=list)
    """Module path patterns that must never go through the proxy"""

    cache_dir: str = field(default_factory=lambda: platformdirs.user_cache_dir(APP_NAME))
    """Root of the extracted module cache"""

    netrc_path: str = field(
        default_factory=lambda: os.path.join(os.path.expanduser("~"), NETRC_FILE_NAME)
    )
    """Credential file consulted for private modules"""

    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    """Per-attempt HTTP timeout in seconds"""

    max_workers: int = DEFAULT_MAX_WORKERS
    """Worker pool size for concurrent fetches"""

    vcs_hosts: Tuple[str, ...] = DEFAULT_VCS_HOSTS
    """Hosts whose archive download scheme is understood"""

    use_go_list: bool = True
    """Whether `go list -m -json` may be consulted for provenance"""


def parse_proxy_setting(value: Optional[str]) -> Optional[str]:
    """
    Interpret a GOPROXY-style value.

    Only the first comma-separated entry is used. "direct" and "off" disable the
    proxy. An unset or empty value means the default public proxy.

    Returns:
        Optional[str]: Proxy base URL without trailing slash, or None when disabled.
    """
    if value is None:
        return DEFAULT_PROXY
    first = value.split(",")[0].strip()
    # GOPROXY also accepts "|" as a separator with fall-through-on-any-error semantics
    first = first.split("|")[0].strip()
    if not first:
        return DEFAULT_PROXY
    if first in PROXY_DISABLED_VALUES:
        return None
    return first.rstrip("/")


def split_patterns(value: Any) -> List[str]:
    """Split a comma-separated pattern string (or list of strings) into trimmed, non-empty items."""
    if not value:
        return []
    items = value if isinstance(value, list) else str(value).split(",")
    return [str(item).strip() for item in items if str(item).strip()]


def _read_config_file(config_path: str) -> Dict[str, Any]:
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        return {}
    except OSError as e:
        raise ConfigurationError(
            f"Could not read configuration file {config_path}", details=str(e)
        ) from e
    except yaml.YAMLError as e:
        raise ConfigurationError(
            f"Invalid YAML in configuration file {config_path}", details=str(e)
        ) from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Configuration file {config_path} must contain a mapping",
            details=f"got {type(data).__name__}",
        )

    unknown = sorted(set(data) - _KNOWN_KEYS)
    if unknown:
        logger.warning(
            f"Ignoring unknown configuration keys in {config_path}: {', '.join(unknown)}"
        )
    return data


def _coerce_positive_number(key: str, value: Any, kind: type) -> Any:
    if isinstance(value, bool):
        raise ConfigurationError(f"Configuration value '{key}' must be a number")
    try:
        number = kind(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(
            f"Configuration value '{key}' must be a number", details=str(e)
        ) from e
    if number <= 0:
        raise ConfigurationError(f"Configuration value '{key}' must be positive")
    return number


def load_config(
    config_path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None
) -> FetchConfig:
    """
    Build the effective FetchConfig from the config file and the environment.

    Parameters:
        config_path (Optional[str]): YAML file to read; defaults to the per-user config file. A missing file is not an error.
        environ (Optional[Mapping[str, str]]): Environment mapping; defaults to os.environ.

    Returns:
        FetchConfig: The merged configuration.

    Raises:
        ConfigurationError: If the file cannot be read, is not valid YAML, or holds values of the wrong type.
    """
    env = os.environ if environ is None else environ
    if config_path and not os.path.exists(config_path):
        raise ConfigurationError(f"Configuration file {config_path} does not exist")
    data = _read_config_file(config_path or CONFIG_FILE)
    config = FetchConfig()

    if "proxy" in data:
        proxy_value = data["proxy"]
        config.proxy = parse_proxy_setting(
            "off" if proxy_value in (None, False) else str(proxy_value)
        )
    if "private" in data:
        config.private_patterns = split_patterns(data["private"])
    if data.get("cache_dir"):
        config.cache_dir = os.path.expanduser(str(data["cache_dir"]))
    if data.get("netrc"):
        config.netrc_path = os.path.expanduser(str(data["netrc"]))
    if "request_timeout" in data:
        config.request_timeout = _coerce_positive_number(
            "request_timeout", data["request_timeout"], float
        )
    if "max_workers" in data:
        config.max_workers = _coerce_positive_number(
            "max_workers", data["max_workers"], int
        )
    if "vcs_hosts" in data:
        hosts = split_patterns(data["vcs_hosts"])
        if not hosts:
            raise ConfigurationError("Configuration value 'vcs_hosts' must not be empty")
        config.vcs_hosts = tuple(host.lower() for host in hosts)
    if "use_go_list" in data:
        if not isinstance(data["use_go_list"], bool):
            raise ConfigurationError("Configuration value 'use_go_list' must be a boolean")
        config.use_go_list = data["use_go_list"]

    if PROXY_ENV_VAR in env:
        config.proxy = parse_proxy_setting(env[PROXY_ENV_VAR])
    private_value = env.get(PRIVATE_ENV_VAR) or env.get(NOPROXY_ENV_VAR)
    if private_value:
        config.private_patterns = split_patterns(private_value)
    if env.get(NETRC_ENV_VAR):
        config.netrc_path = env[NETRC_ENV_VAR]
    if env.get(CACHE_DIR_ENV_VAR):
        config.cache_dir = env[CACHE_DIR_ENV_VAR]

    logger.debug(
        f"Effective configuration: proxy={config.proxy}, private={config.private_patterns}, "
        f"cache_dir={config.cache_dir}"
    )
    return config
