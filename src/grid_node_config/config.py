"""Configuration loading and resolution for grid nodes."""

from __future__ import annotations

import argparse
import json
import os
from types import MappingProxyType
from dataclasses import dataclass, field, replace
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple, Union

from .capabilities import (
    Capability,
    coerce_capabilities,
    drop_unsupported_platforms,
    fix_up_capabilities,
)
from .endpoint import DEFAULT_NODE_PORT, HostPort, advertised_address, resolve_hub_endpoint
from .errors import ConfigParseError, IncompleteEndpoint, LegacyConfigShapeError, NodeConfigError
from .logging import LOG_LEVELS, get_logger, redact_mapping
from .merge import merge_fields
from .network import AddressLookup, fix_up_host
from .platforms import Platform

ROLE = "node"
CONFIG_ENV_PREFIX = "GRID_NODE_"
DEFAULT_NODE_CONFIG_FILE = "node.json"
LEGACY_CONFIGURATION_KEY = "configuration"

JsonSource = Union[str, Path, Mapping[str, Any], Any]

logger = get_logger("grid.node.config")


def _defaults_dir() -> Path:
    return Path(__file__).with_name("defaults")


# attribute name -> JSON key
_JSON_KEYS: Dict[str, str] = {
    "host": "host",
    "port": "port",
    "max_session": "maxSession",
    "debug": "debug",
    "log": "log",
    "timeout": "timeout",
    "browser_timeout": "browserTimeout",
    "custom": "custom",
    "hub": "hub",
    "hub_host": "hubHost",
    "hub_port": "hubPort",
    "id": "id",
    "remote_host": "remoteHost",
    "capabilities": "capabilities",
    "down_polling_limit": "downPollingLimit",
    "node_polling": "nodePolling",
    "node_status_check_timeout": "nodeStatusCheckTimeout",
    "proxy": "proxy",
    "register": "register",
    "register_cycle": "registerCycle",
    "unregister_if_still_down_after": "unregisterIfStillDownAfter",
    "enable_platform_verification": "enablePlatformVerification",
}

_INT_FIELDS = {
    "port",
    "hub_port",
    "max_session",
    "timeout",
    "browser_timeout",
    "down_polling_limit",
    "node_polling",
    "node_status_check_timeout",
    "register_cycle",
    "unregister_if_still_down_after",
}
_BOOL_FIELDS = {"debug", "register", "enable_platform_verification"}
_NON_NEGATIVE_FIELDS = (
    "timeout",
    "browser_timeout",
    "down_polling_limit",
    "node_polling",
    "node_status_check_timeout",
    "register_cycle",
    "unregister_if_still_down_after",
)


@dataclass(frozen=True)
class NodeConfig:
    """Partial node configuration; ``None`` marks a field as unset."""

    hub: Optional[str] = None
    hub_host: Optional[str] = None
    hub_port: Optional[int] = None
    host: Optional[str] = None
    port: Optional[int] = None
    remote_host: Optional[str] = None
    id: Optional[str] = None
    capabilities: Optional[Tuple[Capability, ...]] = None
    max_session: Optional[int] = None
    register: Optional[bool] = None
    register_cycle: Optional[int] = None
    node_polling: Optional[int] = None
    node_status_check_timeout: Optional[int] = None
    unregister_if_still_down_after: Optional[int] = None
    down_polling_limit: Optional[int] = None
    proxy: Optional[str] = None
    enable_platform_verification: Optional[bool] = None
    debug: Optional[bool] = None
    log: Optional[str] = None
    timeout: Optional[int] = None
    browser_timeout: Optional[int] = None
    custom: Optional[Mapping[str, str]] = None
    role: str = field(default=ROLE, init=False)

    def __post_init__(self) -> None:
        # keep the record the sole owner of its collections
        if self.capabilities is not None:
            object.__setattr__(self, "capabilities", coerce_capabilities(self.capabilities))
        if self.custom is not None:
            object.__setattr__(self, "custom", MappingProxyType(dict(self.custom)))
        _validate_config(self)

    @classmethod
    def from_mapping(cls, data: Any) -> "NodeConfig":
        """Build a record from a parsed JSON document."""

        if not isinstance(data, Mapping):
            raise ValueError("Node configuration must be a JSON object.")
        if data.get(LEGACY_CONFIGURATION_KEY) is not None:
            raise LegacyConfigShapeError(
                "The nested 'configuration' section is no longer supported; move its keys "
                "to the top level of the node config (hub, capabilities, maxSession, ...)."
            )
        values = {
            name: _coerce_field(name, data[key])
            for name, key in _JSON_KEYS.items()
            if data.get(key) is not None
        }
        return cls(**values)

    @classmethod
    def from_sources(cls, cli_args: Optional[Iterable[str]] = None) -> "NodeConfig":
        """Load configuration from defaults, file, env, and CLI (in that order)."""

        return cls.from_args(parse_cli(cli_args))

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> "NodeConfig":
        file_source = args.node_config or os.environ.get(f"{CONFIG_ENV_PREFIX}CONFIG")
        config = load_from_json(file_source) if file_source else load_defaults()
        config = _apply_layer(config, _mapping_to_config(_load_env_config(CONFIG_ENV_PREFIX)))
        config = _apply_layer(config, _mapping_to_config(_cli_overrides(args)))
        return config

    def merge(self, other: Optional["NodeConfig"]) -> "NodeConfig":
        """Return a copy where every field set on ``other`` wins."""

        if other is None:
            return self
        return replace(self, **merge_fields(self, other))

    def hub_endpoint(self) -> HostPort:
        return resolve_hub_endpoint(self.hub, self.hub_host, self.hub_port)

    def advertised_address(self) -> str:
        return advertised_address(self.host, self.port, self.remote_host)

    def fix_up_host(self, lookup: Optional[AddressLookup] = None) -> "NodeConfig":
        return replace(self, host=fix_up_host(self.host, lookup))

    def fix_up_capabilities(self, current: Optional[Platform] = None) -> "NodeConfig":
        return replace(self, capabilities=fix_up_capabilities(self.capabilities, current))

    def drop_unsupported_capabilities(self, current: Optional[Platform] = None) -> "NodeConfig":
        return replace(
            self,
            capabilities=drop_unsupported_platforms(
                self.capabilities, bool(self.enable_platform_verification), current
            ),
        )

    def resolve(
        self,
        lookup: Optional[AddressLookup] = None,
        current: Optional[Platform] = None,
    ) -> "ResolvedNodeConfig":
        """Run every fix-up and return the immutable configuration a node starts with."""

        config = self.fix_up_host(lookup).fix_up_capabilities(current).drop_unsupported_capabilities(current)
        hub = config.hub_endpoint()
        port = config.port if config.port is not None else DEFAULT_NODE_PORT
        resolved = ResolvedNodeConfig(
            hub=config.hub if config.hub is not None else hub.url(),
            hub_host=hub.host,
            hub_port=hub.port,
            host=config.host,  # type: ignore[arg-type]
            port=port,
            remote_host=advertised_address(config.host, port, config.remote_host),
            id=config.id,
            capabilities=config.capabilities or (),
            max_session=config.max_session,
            register=True if config.register is None else config.register,
            register_cycle=config.register_cycle,
            node_polling=config.node_polling,
            node_status_check_timeout=config.node_status_check_timeout,
            unregister_if_still_down_after=config.unregister_if_still_down_after,
            down_polling_limit=config.down_polling_limit,
            proxy=config.proxy,
            enable_platform_verification=bool(config.enable_platform_verification),
            debug=bool(config.debug),
            log=config.log,
            timeout=config.timeout,
            browser_timeout=config.browser_timeout,
            custom=MappingProxyType(dict(config.custom or {})),
        )
        logger.info(
            "Resolved node configuration",
            extra={
                "hub": resolved.hub,
                "remote_host": resolved.remote_host,
                "capability_count": len(resolved.capabilities),
            },
        )
        return resolved

    def to_dict(self) -> Dict[str, Any]:
        """Serialize using the JSON key names."""

        return _serialize(self)

    def logging_dict(self) -> Dict[str, Any]:
        """Return a sanitized mapping suitable for structured logging."""

        logged = self.to_dict()
        if logged.get("custom"):
            logged["custom"] = redact_mapping(logged["custom"])
        return logged


@dataclass(frozen=True)
class ResolvedNodeConfig:
    """Fully resolved node configuration."""

    hub: str
    hub_host: str
    hub_port: int
    host: str
    port: int
    remote_host: str
    id: Optional[str]
    capabilities: Tuple[Capability, ...]
    max_session: Optional[int]
    register: bool
    register_cycle: Optional[int]
    node_polling: Optional[int]
    node_status_check_timeout: Optional[int]
    unregister_if_still_down_after: Optional[int]
    down_polling_limit: Optional[int]
    proxy: Optional[str]
    enable_platform_verification: bool
    debug: bool
    log: Optional[str]
    timeout: Optional[int]
    browser_timeout: Optional[int]
    custom: Mapping[str, str]
    role: str = field(default=ROLE, init=False)

    @property
    def hub_host_port(self) -> HostPort:
        return HostPort(host=self.hub_host, port=self.hub_port)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize using the JSON key names."""

        return _serialize(self)


def _serialize(config: Union[NodeConfig, ResolvedNodeConfig]) -> Dict[str, Any]:
    data: Dict[str, Any] = {"role": config.role}
    for name, key in _JSON_KEYS.items():
        value = getattr(config, name)
        if name == "capabilities" and value is not None:
            value = [capability.as_dict() for capability in value]
        elif name == "custom" and value is not None:
            value = dict(value)
        data[key] = value
    return data


def _validate_config(config: NodeConfig) -> None:
    for name in ("port", "hub_port"):
        value = getattr(config, name)
        if value is not None:
            _validate_range(name, value, 1, 65535)
    if config.max_session is not None:
        _validate_range("max_session", config.max_session, 1, 10000)
    for name in _NON_NEGATIVE_FIELDS:
        value = getattr(config, name)
        if value is not None and value < 0:
            raise ValueError(f"{name} must not be negative; got {value}.")


def _validate_range(name: str, value: float, minimum: float, maximum: float) -> None:
    if value < minimum or value > maximum:
        raise ValueError(f"{name} must be between {minimum} and {maximum}; got {value}.")


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _coerce_custom(value: Any) -> Dict[str, str]:
    if isinstance(value, str):
        value = json.loads(value)
    if not isinstance(value, Mapping):
        raise ValueError("custom must be a JSON object of string values")
    return {str(key): str(item) for key, item in value.items()}


def _coerce_field(name: str, value: Any) -> Any:
    if name in _INT_FIELDS:
        if isinstance(value, bool):
            raise ValueError(f"{name} must be an integer; got {value}.")
        if isinstance(value, float) and not value.is_integer():
            raise ValueError(f"{name} must be a whole number; got {value}.")
        return int(value)
    if name in _BOOL_FIELDS:
        return _coerce_bool(value)
    if name == "capabilities":
        return coerce_capabilities(value)
    if name == "custom":
        return _coerce_custom(value)
    return str(value)


def _require_hub(config: NodeConfig) -> None:
    if config.hub is not None:
        return
    if config.hub_host is None:
        raise IncompleteEndpoint("You must specify either a hub or hubHost parameter: must specify hubHost")
    if config.hub_port is None:
        raise IncompleteEndpoint("You must specify either a hub or hubPort parameter: must specify hubPort")


def _read_json_source(source: JsonSource) -> Any:
    if isinstance(source, Mapping):
        return source
    if hasattr(source, "read"):
        return json.load(source)
    path = Path(source).expanduser()
    if not path.is_file():
        packaged = _defaults_dir() / str(source)
        if not packaged.is_file():
            raise FileNotFoundError(f"Node config file not found: {source}")
        path = packaged
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


@lru_cache(maxsize=1)
def load_defaults() -> NodeConfig:
    """Load and cache the packaged default node configuration."""

    path = _defaults_dir() / DEFAULT_NODE_CONFIG_FILE
    try:
        return NodeConfig.from_mapping(_read_json_source(path))
    except NodeConfigError:
        raise
    except (OSError, ValueError, TypeError, OverflowError) as exc:
        raise ConfigParseError(f"Default node configuration {path} is unusable: {exc}") from exc


def load_from_json(source: JsonSource) -> NodeConfig:
    """Load a node config file and fold it over the packaged defaults."""

    label = source if isinstance(source, (str, Path)) else type(source).__name__
    try:
        from_json = NodeConfig.from_mapping(_read_json_source(source))
        _require_hub(from_json)
        result = load_defaults().merge(from_json)
        # hub/host/port reflect the file exactly rather than merge semantics
        verbatim: Dict[str, Any] = {
            "hub": from_json.hub
            if from_json.hub is not None
            else HostPort(host=from_json.hub_host, port=from_json.hub_port).url(),  # type: ignore[arg-type]
        }
        for name in ("hub_host", "hub_port", "host", "port"):
            value = getattr(from_json, name)
            if value is not None:
                verbatim[name] = value
        result = replace(result, **verbatim)
    except NodeConfigError:
        raise
    except (OSError, ValueError, TypeError, OverflowError) as exc:
        raise ConfigParseError(f"Error with the JSON of the config {label}: {exc}") from exc
    logger.info("Loaded node configuration", extra={"source": str(label)})
    return result


def _apply_layer(config: NodeConfig, layer: NodeConfig) -> NodeConfig:
    merged = config.merge(layer)
    if layer.hub is None and (layer.hub_host is not None or layer.hub_port is not None):
        # an explicit host/port override must not lose to an inherited hub URL
        merged = replace(merged, hub=None)
    return merged


def _mapping_to_config(overrides: Mapping[str, Any]) -> NodeConfig:
    return NodeConfig(
        **{
            name: _coerce_field(name, value)
            for name, value in overrides.items()
            if value is not None
        }
    )


def _load_env_config(prefix: str) -> Dict[str, Any]:
    mapping: Dict[str, Any] = {}
    for name in _JSON_KEYS:
        env_key = f"{prefix}{name}".upper()
        if env_key in os.environ:
            mapping[name] = os.environ[env_key]
    return mapping


_CLI_ONLY = {"node_config", "log_level", "log_format", "output"}


def _cli_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    return {k: v for k, v in vars(args).items() if k not in _CLI_ONLY and v is not None}


def parse_cli(cli_args: Optional[Iterable[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="grid-node-config",
        description="Resolve and print the configuration of a grid node.",
    )
    parser.add_argument(
        "--node-config",
        help=f"Path to a JSON node config file (env: {CONFIG_ENV_PREFIX}CONFIG).",
    )
    parser.add_argument("--hub", help="URL of the hub, e.g. http://localhost:4444.")
    parser.add_argument("--hub-host", help="Host name or IP of the hub.")
    parser.add_argument("--hub-port", type=int, help="Port of the hub.")
    parser.add_argument(
        "--host",
        help="Host name or IP this node listens on; 'ip' or 'host' resolve dynamically.",
    )
    parser.add_argument("--port", type=int, help="Port this node listens on.")
    parser.add_argument(
        "--remote-host",
        help="Address reported to the hub; defaults to http://<host>:<port>.",
    )
    parser.add_argument("--id", help="Identifier for this node.")
    parser.add_argument(
        "--capabilities",
        action="append",
        help=(
            "Capability offered by this node as key=value pairs separated by commas, "
            "e.g. browserName=firefox,maxInstances=5. Repeat for several."
        ),
    )
    parser.add_argument("--max-session", type=int, help="Maximum concurrent sessions.")
    parser.add_argument(
        "--register",
        dest="register",
        action="store_true",
        help="Register this node with the hub (default).",
    )
    parser.add_argument(
        "--no-register",
        dest="register",
        action="store_false",
        help="Do not register this node with the hub.",
    )
    parser.set_defaults(register=None)
    parser.add_argument("--register-cycle", type=int, help="Milliseconds between registrations.")
    parser.add_argument("--node-polling", type=int, help="Milliseconds between hub polls of this node.")
    parser.add_argument(
        "--node-status-check-timeout",
        type=int,
        help="Milliseconds before a node status check times out.",
    )
    parser.add_argument(
        "--unregister-if-still-down-after",
        type=int,
        help="Milliseconds a node may stay down before it is unregistered.",
    )
    parser.add_argument(
        "--down-polling-limit",
        type=int,
        help="Failed polls before the node is marked down.",
    )
    parser.add_argument("--proxy", help="Class name of the proxy strategy used by the hub.")
    parser.add_argument(
        "--enable-platform-verification",
        action="store_true",
        default=None,
        help="Drop capabilities whose platform does not match this machine.",
    )
    parser.add_argument("--debug", action="store_true", default=None, help="Enable debug logging.")
    parser.add_argument("--log", help="Write logs to this file.")
    parser.add_argument("--timeout", type=int, help="Seconds before an idle session is released.")
    parser.add_argument("--browser-timeout", type=int, help="Seconds to wait for a browser command.")
    parser.add_argument(
        "--log-level",
        choices=list(LOG_LEVELS),
        help="Log verbosity level.",
    )
    parser.add_argument(
        "--log-format",
        choices=["plain", "json"],
        default="plain",
        help="Structured logging format.",
    )
    parser.add_argument(
        "--output",
        choices=["json", "yaml", "table"],
        default="json",
        help="Format used to print the resolved configuration.",
    )
    return parser.parse_args(args=cli_args)

