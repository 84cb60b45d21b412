"""Node configuration resolver for a distributed test grid."""

from .config import NodeConfig, ResolvedNodeConfig, load_defaults, load_from_json
from .errors import (
    ConfigParseError,
    IncompleteEndpoint,
    InvalidEndpoint,
    LegacyConfigShapeError,
    NetworkLookupError,
    NodeConfigError,
)

__all__ = [
    "ConfigParseError",
    "IncompleteEndpoint",
    "InvalidEndpoint",
    "LegacyConfigShapeError",
    "NetworkLookupError",
    "NodeConfig",
    "NodeConfigError",
    "ResolvedNodeConfig",
    "load_defaults",
    "load_from_json",
]
__version__ = "1.0.0"
