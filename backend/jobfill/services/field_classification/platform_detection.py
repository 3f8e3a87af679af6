"""
Platform detection for application-tracking systems.

Maps a page URL to the hosting forms product (Workday, Taleo, ...) and, where
the host name encodes it, the hiring company.
"""
import logging
import re
from enum import Enum
from typing import Optional
from urllib.parse import urlparse

logger = logging.getLogger(__name__)


class Platform(str, Enum):
    """Known application-tracking platforms."""
    WORKDAY = "workday"
    TALEO = "taleo"
    ICIMS = "icims"
    SUCCESSFACTORS = "successfactors"
    GREENHOUSE = "greenhouse"
    LEVER = "lever"
    UNKNOWN = "unknown"


UNKNOWN_COMPANY = "unknown"

# Checked in order; first substring hit wins
_PLATFORM_MARKERS = [
    (("myworkdayjobs.com", "workday.com"), Platform.WORKDAY),
    (("taleo.net", "taleo.com"), Platform.TALEO),
    (("icims.com",), Platform.ICIMS),
    (("successfactors",), Platform.SUCCESSFACTORS),
    (("greenhouse.io",), Platform.GREENHOUSE),
    (("lever.co",), Platform.LEVER),
]

_COMPANY_HOST_PATTERNS = [
    re.compile(r"^([^.]+)\.wd\d*\.myworkdayjobs\.com"),  # acme.wd1.myworkdayjobs.com
    re.compile(r"^([^.]+)\.taleo\.net"),                  # acme.taleo.net
]


def detect_platform(url: Optional[str]) -> Platform:
    """Detect the platform from a URL; unrecognized URLs map to UNKNOWN."""
    if not url:
        return Platform.UNKNOWN
    url_lower = url.lower()
    for markers, platform in _PLATFORM_MARKERS:
        if any(marker in url_lower for marker in markers):
            return platform
    return Platform.UNKNOWN


def extract_company(url: Optional[str]) -> str:
    """Extract the company slug from platform host names."""
    if not url:
        return UNKNOWN_COMPANY
    try:
        hostname = (urlparse(url).hostname or "").lower()
    except ValueError as e:
        logger.debug(f"Could not parse URL {url!r}: {e}")
        return UNKNOWN_COMPANY

    for pattern in _COMPANY_HOST_PATTERNS:
        match = pattern.match(hostname)
        if match:
            return match.group(1)
    return UNKNOWN_COMPANY
