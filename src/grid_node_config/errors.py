"""Errors raised while loading and resolving node configuration."""

from __future__ import annotations


class NodeConfigError(Exception):
    """Base class for node configuration failures."""


class ConfigParseError(NodeConfigError):
    """Raised when a configuration source cannot be read or parsed."""


class LegacyConfigShapeError(ConfigParseError):
    """Raised when a source uses the retired nested ``configuration`` layout."""


class IncompleteEndpoint(NodeConfigError):
    """Raised when only one half of the hub host/port pair is supplied."""


class InvalidEndpoint(NodeConfigError):
    """Raised when a hub URL cannot be parsed."""


class NetworkLookupError(NodeConfigError):
    """Raised when no non-loopback address can be found for this machine."""
