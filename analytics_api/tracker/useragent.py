"""
User-agent and referrer classification.

Coarse on purpose: the output only has to land in one of the closed
dimension sets, not identify a browser build.
"""

import re
from dataclasses import dataclass

from analytics_api.schemas.dimensions import (
    Browser,
    DeviceType,
    OperatingSystem,
    ReferrerCategory,
)

BOT_PATTERNS = [
    re.compile(p, re.I)
    for p in (r"bot", r"spider", r"crawl", r"headless", r"phantom", r"slurp", r"scrape")
]

# Windows NT kernel version -> marketing version
_WINDOWS_VERSIONS = {
    "10.0": "10/11",
    "6.3": "8.1",
    "6.2": "8",
    "6.1": "7",
}

# Order matters: the first match wins.
_REFERRER_RULES = [
    (ReferrerCategory.GOOGLE, ("google.",)),
    (ReferrerCategory.FACEBOOK, ("facebook.", "fb.")),
    (ReferrerCategory.INSTAGRAM, ("instagram.",)),
    (ReferrerCategory.TWITTER, ("twitter.", "t.co")),
    (ReferrerCategory.LINKEDIN, ("linkedin.",)),
    (ReferrerCategory.YOUTUBE, ("youtube.", "youtu.be")),
    (ReferrerCategory.BING, ("bing.",)),
    (ReferrerCategory.YAHOO, ("yahoo.",)),
]


@dataclass(frozen=True)
class VersionedName:
    name: str
    version: str = ""


def is_bot(user_agent: str | None) -> bool:
    if not user_agent:
        return False
    return any(p.search(user_agent) for p in BOT_PATTERNS)


def get_device_type(user_agent: str | None) -> DeviceType:
    ua = (user_agent or "").lower()
    if not ua:
        return DeviceType.UNKNOWN
    if re.search(r"iphone|ipad|ipod", ua):
        return DeviceType.IOS
    if "android" in ua:
        return DeviceType.ANDROID
    if "mac os x" in ua:
        return DeviceType.MACOS
    if "windows nt" in ua:
        return DeviceType.WINDOWS
    if "linux" in ua:
        return DeviceType.LINUX
    return DeviceType.OTHER


def _match_version(pattern: str, ua: str) -> str:
    m = re.search(pattern, ua)
    return m.group(1) if m else ""


def get_browser_info(user_agent: str | None) -> VersionedName:
    """Detect the browser family.

    Chromium derivatives carry ``Chrome/`` too, so Edge and Opera are
    checked first; Safari is only Safari when no Chrome token is present.
    """
    ua = user_agent or ""
    if "Edg/" in ua:
        return VersionedName(Browser.EDGE.value, _match_version(r"Edg/(\d+\.\d+)", ua))
    if "OPR/" in ua or "Opera/" in ua:
        return VersionedName(Browser.OPERA.value, _match_version(r"(?:OPR|Opera)/(\d+\.\d+)", ua))
    if "Chrome/" in ua:
        return VersionedName(Browser.CHROME.value, _match_version(r"Chrome/(\d+\.\d+)", ua))
    if "Firefox/" in ua:
        return VersionedName(Browser.FIREFOX.value, _match_version(r"Firefox/(\d+\.\d+)", ua))
    if "Safari/" in ua:
        return VersionedName(Browser.SAFARI.value, _match_version(r"Version/(\d+\.\d+)", ua))
    return VersionedName(Browser.UNKNOWN.value)


def get_os_info(user_agent: str | None) -> VersionedName:
    ua = user_agent or ""
    if "Windows NT" in ua:
        nt = _match_version(r"Windows NT (\d+\.\d+)", ua)
        return VersionedName(OperatingSystem.WINDOWS.value, _WINDOWS_VERSIONS.get(nt, nt))
    # iOS user agents also say "like Mac OS X", so check devices first
    if re.search(r"iPhone|iPad|iPod", ua):
        version = _match_version(r"OS (\d+[._]\d+(?:[._]\d+)?)", ua)
        return VersionedName(OperatingSystem.IOS.value, version.replace("_", "."))
    if "Mac OS X" in ua:
        version = _match_version(r"Mac OS X (\d+[._]\d+(?:[._]\d+)?)", ua)
        return VersionedName(OperatingSystem.MACOS.value, version.replace("_", "."))
    if "Android" in ua:
        return VersionedName(OperatingSystem.ANDROID.value, _match_version(r"Android (\d+(?:\.\d+)?)", ua))
    if "Linux" in ua:
        return VersionedName(OperatingSystem.LINUX.value)
    return VersionedName(OperatingSystem.UNKNOWN.value)


def categorize_referrer(referrer: str | None) -> ReferrerCategory:
    if not referrer:
        return ReferrerCategory.DIRECT
    url = referrer.lower()
    for category, needles in _REFERRER_RULES:
        if any(n in url for n in needles):
            return category
    return ReferrerCategory.OTHER
