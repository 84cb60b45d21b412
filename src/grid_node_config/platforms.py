"""Platform model used to match capabilities against the current machine."""

from __future__ import annotations

import platform as _platform
from enum import Enum
from functools import lru_cache
from typing import Any, Optional, Tuple


class Platform(Enum):
    """Operating systems a node can advertise, grouped into families."""

    WINDOWS = ("windows",)
    XP = ("windows server 2003", "xp", "winnt", "windows_nt", "windows nt")
    VISTA = ("windows vista", "windows server 2008")
    WIN7 = ("windows 7",)
    WIN8 = ("windows 8", "windows server 2012")
    WIN8_1 = ("windows 8.1",)
    WIN10 = ("windows 10", "win10")
    MAC = ("mac", "darwin", "macos", "mac os x", "os x")
    SIERRA = ("macos 10.12", "macos sierra")
    HIGH_SIERRA = ("macos 10.13", "macos high sierra")
    MOJAVE = ("macos 10.14", "macos mojave")
    CATALINA = ("macos 10.15", "macos catalina")
    UNIX = ("solaris", "bsd")
    LINUX = ("linux",)
    ANDROID = ("android", "dalvik")
    IOS = ("ios",)
    ANY = ("any",)

    def __init__(self, *aliases: str) -> None:
        self.aliases: Tuple[str, ...] = aliases

    @property
    def family(self) -> Optional["Platform"]:
        return _FAMILIES.get(self)

    def is_(self, other: "Platform") -> bool:
        """Return True when this platform is ``other`` or belongs to its family."""

        if self is other or other is Platform.ANY:
            return True
        family = self.family
        return family is not None and family.is_(other)

    @classmethod
    def from_value(cls, value: Any) -> Optional["Platform"]:
        """Parse a capability value into a platform; unknown values give None."""

        if value is None:
            return None
        if isinstance(value, Platform):
            return value
        text = str(value).strip()
        if not text:
            return None
        upper = text.upper().replace(" ", "_")
        if upper in cls.__members__:
            return cls.__members__[upper]
        lowered = text.lower()
        for member in cls:
            if lowered in member.aliases:
                return member
        return None


_FAMILIES = {
    Platform.XP: Platform.WINDOWS,
    Platform.VISTA: Platform.WINDOWS,
    Platform.WIN7: Platform.WINDOWS,
    Platform.WIN8: Platform.WINDOWS,
    Platform.WIN8_1: Platform.WINDOWS,
    Platform.WIN10: Platform.WINDOWS,
    Platform.SIERRA: Platform.MAC,
    Platform.HIGH_SIERRA: Platform.MAC,
    Platform.MOJAVE: Platform.MAC,
    Platform.CATALINA: Platform.MAC,
    Platform.IOS: Platform.MAC,
    Platform.LINUX: Platform.UNIX,
    Platform.ANDROID: Platform.LINUX,
}

_WINDOWS_RELEASES = {
    "xp": Platform.XP,
    "vista": Platform.VISTA,
    "7": Platform.WIN7,
    "8": Platform.WIN8,
    "8.1": Platform.WIN8_1,
    "10": Platform.WIN10,
}

_MAC_RELEASES = {
    "10.12": Platform.SIERRA,
    "10.13": Platform.HIGH_SIERRA,
    "10.14": Platform.MOJAVE,
    "10.15": Platform.CATALINA,
}


def detect_platform(system: str, release: str = "", mac_version: str = "") -> Platform:
    """Map ``platform.system()``/``platform.release()`` output to a Platform."""

    name = system.strip().lower()
    if name == "windows":
        return _WINDOWS_RELEASES.get(release.strip().lower(), Platform.WINDOWS)
    if name == "darwin":
        short = ".".join(mac_version.split(".")[:2])
        return _MAC_RELEASES.get(short, Platform.MAC)
    if name == "linux":
        return Platform.LINUX
    if name in {"freebsd", "openbsd", "netbsd", "sunos", "aix"}:
        return Platform.UNIX
    return Platform.ANY


@lru_cache(maxsize=1)
def current_platform() -> Platform:
    """Return the platform of the running machine."""

    return detect_platform(
        _platform.system(),
        _platform.release(),
        _platform.mac_ver()[0],
    )
