"""
User-Agent parsing for browser and device detection.

This module extracts the browser family, major browser version, device
category and (where the UA reveals it) device model. User-Agents are
notoriously messy (Chrome claims to be Mozilla, Safari, and Chrome all at
once), so we use ordered pattern matching.

Key Design Decisions:
- Check for newer/specific browsers first (Edge before Chrome)
- Only the major browser version is kept
- Return "" rather than guessing when nothing matches
"""

import re
from dataclasses import dataclass
from enum import Enum


class DeviceType(str, Enum):
    """Device category."""
    DESKTOP = "desktop"
    MOBILE = "mobile"
    TABLET = "tablet"
    SMARTTV = "smarttv"
    CONSOLE = "console"
    UNKNOWN = ""


@dataclass(frozen=True)
class UserAgentInfo:
    """
    Parsed user-agent information.

    Attributes:
        browser_name: Browser family name (Chrome, Firefox, Safari, etc.)
        browser_version: Major version number ("" if not parseable)
        device_type: Device category
        device_model: Device model where exposed (iPhone, Pixel 7, ...)
    """
    browser_name: str = ""
    browser_version: str = ""
    device_type: DeviceType = DeviceType.UNKNOWN
    device_model: str = ""

    @property
    def is_mobile(self) -> bool:
        """Check if device is mobile or tablet."""
        return self.device_type in (DeviceType.MOBILE, DeviceType.TABLET)


# =============================================================================
# BROWSER DETECTION PATTERNS
# =============================================================================
# Order matters! Check specific browsers before generic ones.
# Each tuple: (pattern with optional version group, browser_name)

BROWSER_PATTERNS = [
    # Chromium-based browsers (check before Chrome)
    (r"Edg(?:e|A|iOS)?/(\d+)", "Edge"),
    (r"OPR/(\d+)", "Opera"),
    (r"Opera.*Version/(\d+)", "Opera"),
    (r"Vivaldi/(\d+)", "Vivaldi"),
    (r"Brave/(\d+)", "Brave"),
    (r"SamsungBrowser/(\d+)", "Samsung Internet"),
    (r"UCBrowser/(\d+)", "UC Browser"),
    (r"YaBrowser/(\d+)", "Yandex"),
    (r"DuckDuckGo/(\d+)", "DuckDuckGo"),

    # Firefox variants
    (r"Firefox Focus/(\d+)", "Firefox Focus"),
    (r"Firefox/(\d+)", "Firefox"),
    (r"FxiOS/(\d+)", "Firefox"),

    # Chrome variants (after other Chromium browsers)
    (r"CriOS/(\d+)", "Chrome"),
    (r"HeadlessChrome/(\d+)", "Chrome Headless"),
    (r"Chrome/(\d+)", "Chrome"),
    (r"Chromium/(\d+)", "Chromium"),

    # In-app WebViews (before Safari, they carry Safari tokens)
    (r"Instagram (\d+)", "Instagram"),
    (r"FBAV/(\d+)", "Facebook"),

    # Safari (must come after Chrome which also contains Safari)
    (r"Version/(\d+).*Safari", "Safari"),
    (r"iPhone.*AppleWebKit", "Mobile Safari"),
    (r"Safari/(\d+)", "Safari"),

    # IE and legacy
    (r"MSIE (\d+)", "IE"),
    (r"Trident.*rv:(\d+)", "IE"),
]

# =============================================================================
# DEVICE TYPE DETECTION
# =============================================================================

SMARTTV_INDICATORS = [
    r"SmartTV",
    r"Smart-TV",
    r"Web0S",
    r"NetCast",
    r"Tizen.*TV",
    r"Roku",
    r"BRAVIA",
    r"AppleTV",
    r"AFT[A-Z]",  # Fire TV
    r"CrKey",  # Chromecast
]

CONSOLE_INDICATORS = [
    r"PlayStation",
    r"Xbox",
    r"Nintendo",
]

TABLET_INDICATORS = [
    r"iPad",
    r"Android(?!.*Mobile)",  # Android without Mobile = tablet
    r"Tablet",
    r"Kindle",
    r"Silk",
]

MOBILE_INDICATORS = [
    r"Mobile",
    r"iPhone",
    r"iPod",
    r"BlackBerry",
    r"IEMobile",
    r"Opera Mini",
    r"Windows Phone",
]

# =============================================================================
# DEVICE MODEL DETECTION
# =============================================================================

APPLE_MODELS = [
    (r"iPhone", "iPhone"),
    (r"iPad", "iPad"),
    (r"iPod", "iPod"),
    (r"Macintosh", "Macintosh"),
]

# "Linux; Android 13; Pixel 7)" / "Android 10; SM-G973F Build/QP1A..."
ANDROID_MODEL_RE = re.compile(r"Android[\s\d.]*;\s*(?:[a-z]{2}[-_][a-zA-Z]{2};\s*)?([^;)]+?)(?:\s+Build/[^;)]*)?\s*[;)]")


def _detect_device_type(ua: str) -> DeviceType:
    """Detect device type from user-agent string."""
    for pattern in SMARTTV_INDICATORS:
        if re.search(pattern, ua):
            return DeviceType.SMARTTV

    for pattern in CONSOLE_INDICATORS:
        if re.search(pattern, ua):
            return DeviceType.CONSOLE

    # Check tablet before mobile (iPad contains Mobile in some cases)
    for pattern in TABLET_INDICATORS:
        if re.search(pattern, ua, re.IGNORECASE):
            return DeviceType.TABLET

    for pattern in MOBILE_INDICATORS:
        if re.search(pattern, ua):
            return DeviceType.MOBILE

    # Anything else that looks like a browser is a desktop
    return DeviceType.DESKTOP


def _detect_browser(ua: str) -> tuple[str, str]:
    """
    Detect browser and major version from user-agent.

    Returns: (browser_name, version_string)
    """
    for pattern, browser_name in BROWSER_PATTERNS:
        match = re.search(pattern, ua, re.IGNORECASE)
        if match:
            version = match.group(1) if match.lastindex else ""
            return (browser_name, version)

    return ("", "")


def _detect_device_model(ua: str) -> str:
    """Detect the device model, if the UA exposes one."""
    for pattern, model in APPLE_MODELS:
        if re.search(pattern, ua):
            return model

    match = ANDROID_MODEL_RE.search(ua)
    if match:
        model = match.group(1).strip()
        # Chrome's reduced UA reports a generic "K"
        if model and model != "K":
            return model

    return ""


def parse_user_agent(user_agent: str | None) -> UserAgentInfo:
    """
    Parse a user-agent string into structured information.

    Args:
        user_agent: The User-Agent header value

    Returns:
        UserAgentInfo with browser and device details

    Examples:
        >>> parse_user_agent("Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36")
        UserAgentInfo(browser_name='Chrome', browser_version='120', device_type=<DeviceType.DESKTOP: 'desktop'>, device_model='Macintosh')
    """
    if not user_agent or not user_agent.strip():
        return UserAgentInfo()

    browser_name, browser_version = _detect_browser(user_agent)

    return UserAgentInfo(
        browser_name=browser_name,
        browser_version=browser_version,
        device_type=_detect_device_type(user_agent),
        device_model=_detect_device_model(user_agent),
    )
