"""Capability descriptors and the fix-up/filter pipeline run before registration."""

from __future__ import annotations

import copy
import json
import re
import uuid
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

from .logging import get_logger
from .platforms import Platform, current_platform

PLATFORM = "platform"
PLATFORM_NAME = "platformName"
PROTOCOL = "seleniumProtocol"
CONFIG_UUID = "server:CONFIG_UUID"
DEFAULT_PROTOCOL = "WebDriver"

logger = get_logger("grid.node.capabilities")


class Capability(Mapping[str, Any]):
    """Read-only mapping describing one environment a node can run."""

    __slots__ = ("_values",)

    def __init__(self, values: Optional[Mapping[str, Any]] = None, **extra: Any) -> None:
        data: Dict[str, Any] = dict(values or {})
        data.update(extra)
        self._values = copy.deepcopy(data)

    def __getitem__(self, key: str) -> Any:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Capability):
            return self._values == other._values
        if isinstance(other, Mapping):
            return self._values == dict(other)
        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"Capability({self._values!r})"

    @property
    def platform(self) -> Optional[Platform]:
        """Parsed platform, checking ``platform`` before ``platformName``."""

        raw = self._values.get(PLATFORM)
        if raw is None:
            raw = self._values.get(PLATFORM_NAME)
        return Platform.from_value(raw)

    def with_value(self, key: str, value: Any) -> "Capability":
        data = dict(self._values)
        data[key] = value
        return Capability(data)

    def as_dict(self) -> Dict[str, Any]:
        return dict(self._values)


def coerce_capabilities(value: Any) -> Optional[Tuple[Capability, ...]]:
    """Build a capability tuple from JSON data, a CLI string or existing objects."""

    if value is None:
        return None
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            return (parse_capability_string(value),)
        if parsed is None:
            raise ValueError("capabilities must not be null")
        return coerce_capabilities(parsed)
    if isinstance(value, Mapping):
        return (Capability(value),)
    if isinstance(value, Iterable):
        capabilities: List[Capability] = []
        for item in value:
            if isinstance(item, Capability):
                capabilities.append(item)
            elif isinstance(item, Mapping):
                capabilities.append(Capability(item))
            elif isinstance(item, str):
                capabilities.extend(coerce_capabilities(item) or ())
            else:
                raise ValueError("Unsupported capability entry")
        return tuple(capabilities)
    raise ValueError("capabilities must be a list of objects")


_PAIR = re.compile(r"(?P<key>[^=]+)=(?P<value>.*)")
_INTEGER = re.compile(r"-?\d+")


def _coerce_capability_value(raw: str) -> Any:
    lowered = raw.lower()
    if lowered in {"true", "false"}:
        return lowered == "true"
    if _INTEGER.fullmatch(raw):
        return int(raw)
    return raw


def parse_capability_string(value: str) -> Capability:
    """Parse ``browserName=firefox,maxInstances=5`` into a Capability."""

    mapping: Dict[str, Any] = {}
    for part in (piece.strip() for piece in value.split(",")):
        if not part:
            continue
        match = _PAIR.match(part)
        if not match:
            raise ValueError(
                "Capabilities must be key=value pairs separated by commas"
            )
        mapping[match.group("key").strip()] = _coerce_capability_value(match.group("value").strip())
    if not mapping:
        raise ValueError("Capability string is empty")
    return Capability(mapping)


def fix_up_capability(capability: Mapping[str, Any], current: Platform) -> Capability:
    """Fill platform, protocol and a fresh configuration id on one descriptor."""

    platform_name = capability.get(PLATFORM_NAME)
    platform = capability.get(PLATFORM)
    resolved = platform_name if platform_name is not None else platform
    if resolved is None:
        resolved = current.name
    protocol = capability.get(PROTOCOL)
    values = dict(capability)
    values[PLATFORM] = resolved
    values[PLATFORM_NAME] = resolved
    values[PROTOCOL] = protocol if protocol is not None else DEFAULT_PROTOCOL
    values[CONFIG_UUID] = str(uuid.uuid4())
    return Capability(values)


def fix_up_capabilities(
    capabilities: Optional[Sequence[Mapping[str, Any]]],
    current: Optional[Platform] = None,
) -> Optional[Tuple[Capability, ...]]:
    """Normalize every descriptor; nothing is dropped at this stage."""

    if capabilities is None:
        return None
    platform = current or current_platform()
    return tuple(fix_up_capability(capability, platform) for capability in capabilities)


def drop_unsupported_platforms(
    capabilities: Optional[Sequence[Mapping[str, Any]]],
    enabled: bool,
    current: Optional[Platform] = None,
) -> Optional[Tuple[Capability, ...]]:
    """Keep descriptors whose platform is ANY or in the current platform family."""

    if capabilities is None:
        return None
    capabilities = tuple(
        item if isinstance(item, Capability) else Capability(item) for item in capabilities
    )
    if not enabled:
        return capabilities
    platform = current or current_platform()
    family = platform.family or platform
    kept: List[Capability] = []
    for capability in capabilities:
        declared = capability.platform
        if declared is not None and (declared is Platform.ANY or declared.is_(family)):
            kept.append(capability)
            continue
        logger.info(
            "Dropping capability that does not match the current platform",
            extra={"capability": dict(capability), "platform_family": family.name},
        )
    return tuple(kept)
