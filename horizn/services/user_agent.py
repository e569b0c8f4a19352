"""
User-agent classification from an ordered rule table.

Rules are evaluated top to bottom and the first match wins, so more
specific tokens (Edge before Chrome, Chrome before Safari, iPad before
generic mobile) must appear first.
"""
import re
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class UARule:
    pattern: re.Pattern
    value: str
    unless: Optional[re.Pattern] = None

    def matches(self, user_agent: str) -> bool:
        if not self.pattern.search(user_agent):
            return False
        return not (self.unless and self.unless.search(user_agent))


def _rule(pattern: str, value: str, unless: Optional[str] = None) -> UARule:
    return UARule(re.compile(pattern), value, re.compile(unless) if unless else None)


DEVICE_RULES: tuple[UARule, ...] = (
    _rule(r"iPad", "tablet"),
    _rule(r"Tablet", "tablet"),
    _rule(r"Mobile|Android|iPhone", "mobile"),
)

BROWSER_RULES: tuple[UARule, ...] = (
    _rule(r"Edg(e|A|iOS)?/", "Edge"),
    _rule(r"OPR/|Opera", "Opera"),
    _rule(r"Chrome/|CriOS/", "Chrome"),
    _rule(r"Firefox/|FxiOS/", "Firefox"),
    _rule(r"Safari/", "Safari", unless=r"Chrome|Chromium"),
)

OS_RULES: tuple[UARule, ...] = (
    _rule(r"Windows NT", "Windows"),
    _rule(r"iPhone OS|iPad; CPU OS", "iOS"),
    _rule(r"Mac OS X", "macOS"),
    _rule(r"Android \d", "Android"),
    _rule(r"Linux", "Linux"),
)

DEFAULT_DEVICE = "desktop"
UNKNOWN = "Unknown"


def _first_match(rules: tuple[UARule, ...], user_agent: str, default: str) -> str:
    for rule in rules:
        if rule.matches(user_agent):
            return rule.value
    return default


def classify(user_agent: Optional[str]) -> dict[str, str]:
    """
    Classify a user-agent string.

    Args:
        user_agent: Raw User-Agent header, may be empty

    Returns:
        Dictionary with device_type, browser and os
    """
    ua = user_agent or ""
    return {
        "device_type": _first_match(DEVICE_RULES, ua, DEFAULT_DEVICE),
        "browser": _first_match(BROWSER_RULES, ua, UNKNOWN),
        "os": _first_match(OS_RULES, ua, UNKNOWN),
    }
