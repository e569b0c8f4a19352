"""
Beacon normalization.

Turns the loosely-typed payloads sent by the collector (JSON body, form
fields, `?json=` or compact pixel parameters) into validated `Beacon`
objects. Everything is checked here, before any write happens.
"""
import math
from dataclasses import dataclass, field
from typing import Any, Optional
from urllib.parse import urlparse

from horizn.core.config import Settings
from horizn.services.errors import ValidationFailed

PAGEVIEW = "pageview"
EVENT = "event"
BATCH = "batch"
PIXEL = "pixel"


@dataclass
class RequestMeta:
    """Per-request facts that are not part of the payload."""

    ip: str
    user_agent: str = ""
    country_code: Optional[str] = None


@dataclass
class Beacon:
    kind: str
    site: str
    session_id: Optional[str] = None
    user_id: Optional[str] = None
    page_url: Optional[str] = None
    page_path: Optional[str] = None
    page_title: Optional[str] = None
    referrer: Optional[str] = None
    load_time: Optional[int] = None
    event_name: Optional[str] = None
    event_category: Optional[str] = None
    event_action: Optional[str] = None
    event_label: Optional[str] = None
    event_value: Optional[float] = None
    event_data: dict[str, Any] = field(default_factory=dict)

    def attributes(self) -> dict[str, Any]:
        """Flat view used by custom funnel predicates (payload keys first, built-ins win)."""
        attrs = dict(self.event_data)
        attrs.update(
            {
                "name": self.event_name,
                "event_name": self.event_name,
                "category": self.event_category,
                "event_category": self.event_category,
                "action": self.event_action,
                "event_action": self.event_action,
                "label": self.event_label,
                "event_label": self.event_label,
                "value": self.event_value,
                "event_value": self.event_value,
                "page_url": self.page_url,
                "page_path": self.page_path,
            }
        )
        return {key: value for key, value in attrs.items() if value is not None}

    def snapshot(self) -> dict[str, Any]:
        """Compact copy stored with each reached funnel step."""
        return {
            "type": self.kind,
            "page_url": self.page_url,
            "page_path": self.page_path,
            "event_name": self.event_name,
            "event_category": self.event_category,
            "event_data": self.event_data or None,
        }


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (dict, list)):
        return None
    text = str(value).strip()
    return text or None


def truncate(value: Optional[str], limit: int) -> Optional[str]:
    if value is None:
        return None
    return value[:limit]


def extract_path(url: Optional[str], limit: int = 512) -> str:
    """Path plus query string of a URL, `/` when there is none."""
    if not url:
        return "/"
    parsed = urlparse(url)
    path = parsed.path or "/"
    if parsed.query:
        path = f"{path}?{parsed.query}"
    return path[:limit]


def referrer_domain(referrer: Optional[str]) -> Optional[str]:
    """Host of a referrer URL without a leading `www.`."""
    if not referrer:
        return None
    domain = urlparse(referrer).netloc.lower()
    if domain.startswith("www."):
        domain = domain[4:]
    return domain or None


def _is_http_url(url: str) -> bool:
    parsed = urlparse(url)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def _load_time(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationFailed("Invalid load time")
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value.strip())
    if not isinstance(value, int) or value < 0:
        raise ValidationFailed("Invalid load time")
    return value


def _event_value(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationFailed("Event value must be numeric")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationFailed("Event value must be numeric") from None
    if not math.isfinite(number):
        raise ValidationFailed("Event value must be numeric")
    return number


def site_identifier(data: dict[str, Any]) -> str:
    site = _text(data.get("tracking_code")) or _text(data.get("site_id"))
    if not site:
        raise ValidationFailed("Site ID is required")
    return site


def infer_kind(data: dict[str, Any], default: str = PAGEVIEW) -> str:
    kind = _text(data.get("type"))
    if kind:
        return kind.lower()
    if isinstance(data.get("batch"), list):
        return BATCH
    if isinstance(data.get("event"), dict):
        return EVENT
    return default


def parse_pageview(data: dict[str, Any], settings: Settings) -> Beacon:
    site = site_identifier(data)
    url = _text(data.get("url")) or _text(data.get("page_url"))
    if not url:
        raise ValidationFailed("Page URL is required")
    if not _is_http_url(url):
        raise ValidationFailed("Invalid page URL")

    url = truncate(url, settings.max_url_length)
    title = _text(data.get("title")) or _text(data.get("page_title"))
    return Beacon(
        kind=PAGEVIEW,
        site=site,
        session_id=_text(data.get("session_id")),
        user_id=_text(data.get("user_id")),
        page_url=url,
        page_path=extract_path(url, settings.max_url_length),
        page_title=truncate(title, settings.max_title_length),
        referrer=truncate(_text(data.get("referrer")), settings.max_url_length),
        load_time=_load_time(data.get("load_time")),
    )


def parse_event(data: dict[str, Any], settings: Settings) -> Beacon:
    site = site_identifier(data)
    # Event fields may be nested under "event" or sent flat
    info = data.get("event") if isinstance(data.get("event"), dict) else data

    name = _text(info.get("name")) or _text(data.get("event_name"))
    if not name:
        raise ValidationFailed("Event name is required")

    session_id = _text(data.get("session_id"))
    if not session_id:
        raise ValidationFailed("Session ID is required")

    payload = info.get("data")
    if payload is None:
        payload = data.get("event_data")
    if payload is not None and not isinstance(payload, dict):
        payload = {"value": payload}

    url = _text(data.get("url")) or _text(data.get("page_url"))
    if url and not _is_http_url(url):
        url = None
    url = truncate(url, settings.max_url_length)

    return Beacon(
        kind=EVENT,
        site=site,
        session_id=session_id,
        user_id=_text(data.get("user_id")),
        page_url=url,
        page_path=extract_path(url, settings.max_url_length) if url else None,
        event_name=truncate(name, 100),
        event_category=truncate(_text(info.get("category")), 100),
        event_action=truncate(_text(info.get("action")), 100),
        event_label=truncate(_text(info.get("label")), 255),
        event_value=_event_value(info.get("value")),
        event_data=payload or {},
    )


def parse_beacon(data: dict[str, Any], settings: Settings, default_kind: str = PAGEVIEW) -> Beacon:
    """Validate a single pageview or event payload."""
    if not isinstance(data, dict):
        raise ValidationFailed("Invalid request data")

    kind = infer_kind(data, default_kind)
    if kind == PAGEVIEW:
        return parse_pageview(data, settings)
    if kind == EVENT:
        return parse_event(data, settings)
    raise ValidationFailed("Unknown item type")


def pixel_payload(params: dict[str, Any]) -> dict[str, Any]:
    """Map compact pixel parameters (s, u, t, r) onto the pageview shape."""
    return {
        "type": PAGEVIEW,
        "tracking_code": params.get("s") or params.get("tracking_code"),
        "site_id": params.get("site_id"),
        "session_id": params.get("sid") or params.get("session_id"),
        "url": params.get("u") or params.get("url"),
        "title": params.get("t") or params.get("title"),
        "referrer": params.get("r") or params.get("referrer"),
    }
