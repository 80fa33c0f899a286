"""
Visitor Analytics: closed dimension vocabularies.

Every grouping dimension is a ``str`` enum with an explicit unknown member,
so aggregation keys stay exhaustive no matter what a client sends.
"""

import re
from enum import Enum

UNKNOWN_COUNTRY = "Unknown"

_COUNTRY_RE = re.compile(r"^[A-Za-z]{2}$")


class _Dimension(str, Enum):
    """Case-insensitive lookup with separate fallbacks for missing and unrecognized input."""

    @classmethod
    def _missing_member(cls) -> "_Dimension":
        raise NotImplementedError

    @classmethod
    def _unrecognized_member(cls) -> "_Dimension":
        return cls._missing_member()

    @classmethod
    def parse(cls, value: str | None) -> "_Dimension":
        if value is None or not str(value).strip():
            return cls._missing_member()
        needle = str(value).strip().lower()
        for member in cls:
            if member.value.lower() == needle:
                return member
        return cls._unrecognized_member()


class DeviceType(_Dimension):
    IOS = "ios"
    ANDROID = "android"
    MACOS = "macos"
    WINDOWS = "windows"
    LINUX = "linux"
    OTHER = "other"
    UNKNOWN = "unknown"

    @classmethod
    def _missing_member(cls):
        return cls.UNKNOWN

    @classmethod
    def _unrecognized_member(cls):
        return cls.OTHER


class Browser(_Dimension):
    CHROME = "Chrome"
    EDGE = "Edge"
    FIREFOX = "Firefox"
    SAFARI = "Safari"
    OPERA = "Opera"
    UNKNOWN = "Unknown"

    @classmethod
    def _missing_member(cls):
        return cls.UNKNOWN


class OperatingSystem(_Dimension):
    WINDOWS = "Windows"
    MACOS = "macOS"
    IOS = "iOS"
    ANDROID = "Android"
    LINUX = "Linux"
    UNKNOWN = "Unknown"

    @classmethod
    def _missing_member(cls):
        return cls.UNKNOWN


class ReferrerCategory(_Dimension):
    DIRECT = "direct"
    GOOGLE = "google"
    FACEBOOK = "facebook"
    INSTAGRAM = "instagram"
    TWITTER = "twitter"
    LINKEDIN = "linkedin"
    YOUTUBE = "youtube"
    BING = "bing"
    YAHOO = "yahoo"
    OTHER = "other"
    UNKNOWN = "unknown"

    @classmethod
    def _missing_member(cls):
        return cls.DIRECT

    @classmethod
    def _unrecognized_member(cls):
        return cls.UNKNOWN


def normalize_country(code: str | None) -> str:
    """ISO 3166 alpha-2, upper-cased; anything else is ``"Unknown"``."""
    if not code or not _COUNTRY_RE.match(code.strip()):
        return UNKNOWN_COUNTRY
    return code.strip().upper()
