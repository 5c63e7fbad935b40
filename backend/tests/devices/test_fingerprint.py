"""
Tests for device fingerprinting and device descriptions.
"""

import pytest

from apps.devices.fingerprint import (
    PLACEHOLDER_FINGERPRINT,
    DeviceSignals,
    compute_fingerprint,
    describe_device,
)
from tests.helpers.user_agents import CHROME_UA, FIREFOX_UA, IOS_CHROME_UA, SAFARI_UA

SIGNALS = DeviceSignals(
    user_agent=CHROME_UA,
    platform="MacIntel",
    language="en-US",
    screen_resolution="1920x1080",
    timezone="Europe/Berlin",
)


class TestComputeFingerprint:
    """Tests for compute_fingerprint."""

    def test_stable_for_same_signals(self):
        assert compute_fingerprint(SIGNALS) == compute_fingerprint(SIGNALS)

    def test_browser_qualified(self):
        fingerprint = compute_fingerprint(SIGNALS)

        assert fingerprint.value.endswith("-Chrome")
        assert len(fingerprint.value.split("-")[0]) == 64
        assert fingerprint.components["userAgentBrowser"] == "Chrome"

    def test_browser_changes_fingerprint(self):
        safari = DeviceSignals(
            user_agent=SAFARI_UA,
            platform=SIGNALS.platform,
            language=SIGNALS.language,
            screen_resolution=SIGNALS.screen_resolution,
            timezone=SIGNALS.timezone,
        )

        assert compute_fingerprint(safari).value != compute_fingerprint(SIGNALS).value

    def test_ignores_full_user_agent_version(self):
        """Browser updates must not make a device unrecognizable."""
        updated = DeviceSignals(
            user_agent=CHROME_UA.replace("Chrome/120", "Chrome/121"),
            platform=SIGNALS.platform,
            language=SIGNALS.language,
            screen_resolution=SIGNALS.screen_resolution,
            timezone=SIGNALS.timezone,
        )

        assert compute_fingerprint(updated).value == compute_fingerprint(SIGNALS).value

    @pytest.mark.parametrize("signals", [None, DeviceSignals(), DeviceSignals(user_agent=CHROME_UA)])
    def test_placeholder_without_signals(self, signals):
        fingerprint = compute_fingerprint(signals)

        assert fingerprint.value == PLACEHOLDER_FINGERPRINT
        assert fingerprint.is_placeholder


class TestDescribeDevice:
    """Tests for describe_device. Every iOS browser is WebKit, so branded apps report as Safari."""

    @pytest.mark.parametrize(
        ("user_agent", "name", "device_class"),
        [
            (CHROME_UA, "Chrome on macOS", "desktop"),
            (SAFARI_UA, "Safari on macOS", "desktop"),
            (FIREFOX_UA, "Firefox on Linux", "desktop"),
            (IOS_CHROME_UA, "Safari on iOS", "mobile"),
            ("", "Unknown device", "unknown"),
        ],
    )
    def test_describe(self, user_agent, name, device_class):
        details = describe_device(user_agent)

        assert details.name == name
        assert details.device_class == device_class

    def test_as_dict(self):
        assert describe_device(CHROME_UA).as_dict() == {
            "browser_family": "Chrome",
            "os_family": "macOS",
            "device_class": "desktop",
            "name": "Chrome on macOS",
        }
