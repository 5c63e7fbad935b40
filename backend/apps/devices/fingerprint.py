"""
Device fingerprinting from low-entropy browser signals.

The fingerprint deliberately uses only a handful of stable signals
(platform, screen resolution, language, timezone, browser family). It is
good enough to say "this looks like the laptop you used last week" and
not good enough to track anyone, which is all recognition needs.
"""

import hashlib
import json
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from apps.passkeys.capabilities import BrowserFamily, is_mobile_user_agent, parse_browser

# Returned when there are no browser signals to hash (server-side calls)
PLACEHOLDER_FINGERPRINT = "server-side-placeholder"

_OS_PATTERNS = (
    ("iPadOS", re.compile(r"iPad")),
    ("iOS", re.compile(r"iPhone|iPod")),
    ("Android", re.compile(r"Android")),
    ("ChromeOS", re.compile(r"CrOS")),
    ("Windows", re.compile(r"Windows")),
    ("macOS", re.compile(r"Macintosh|Mac OS X")),
    ("Linux", re.compile(r"Linux")),
)


@dataclass(frozen=True)
class DeviceSignals:
    """Signals a browser reports about itself."""

    user_agent: str = ""
    platform: str = ""
    language: str = ""
    screen_resolution: str = ""
    timezone: str = ""
    extras: Mapping[str, Any] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not (self.platform or self.language or self.screen_resolution or self.timezone)


@dataclass(frozen=True)
class Fingerprint:
    value: str
    components: dict[str, str] = field(default_factory=dict)

    @property
    def is_placeholder(self) -> bool:
        return self.value == PLACEHOLDER_FINGERPRINT


@dataclass(frozen=True)
class DeviceDetails:
    """Human-facing description of a device. Not security relevant."""

    browser_family: str
    os_family: str
    device_class: str
    name: str

    def as_dict(self) -> dict[str, str]:
        return {
            "browser_family": self.browser_family,
            "os_family": self.os_family,
            "device_class": self.device_class,
            "name": self.name,
        }


def compute_fingerprint(signals: DeviceSignals | None) -> Fingerprint:
    """Browser-qualified SHA-256 of the stable signals, or the placeholder."""
    if signals is None or signals.is_empty:
        return Fingerprint(value=PLACEHOLDER_FINGERPRINT)

    family, _ = parse_browser(signals.user_agent)
    components = {
        "platform": signals.platform,
        "screenResolution": signals.screen_resolution,
        "language": signals.language,
        "timezone": signals.timezone,
        "userAgentBrowser": family.value,
    }
    payload = json.dumps(components, sort_keys=True, separators=(",", ":"))
    digest = hashlib.sha256(payload.encode()).hexdigest()
    return Fingerprint(value=f"{digest}-{family.value}", components=components)


def describe_device(user_agent: str) -> DeviceDetails:
    family, _ = parse_browser(user_agent)
    os_family = next((name for name, pattern in _OS_PATTERNS if pattern.search(user_agent)), "Unknown")

    if os_family == "iPadOS" or "Tablet" in user_agent:
        device_class = "tablet"
    elif is_mobile_user_agent(user_agent):
        device_class = "mobile"
    elif os_family == "Unknown":
        device_class = "unknown"
    else:
        device_class = "desktop"

    if family == BrowserFamily.UNKNOWN and os_family == "Unknown":
        name = "Unknown device"
    elif family == BrowserFamily.UNKNOWN:
        name = f"{os_family} device"
    else:
        name = f"{family.value} on {os_family}"

    return DeviceDetails(
        browser_family=family.value,
        os_family=os_family,
        device_class=device_class,
        name=name,
    )
