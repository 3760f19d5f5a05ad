"""Licence data model and the persisted store document."""

import logging
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)


class LicenceType(str, Enum):
    """Kinds of licence the server issues."""

    PERPETUAL = "perpetual"
    SUBSCRIPTION = "subscription"


# Type names written by the previous (Spanish language) server
LEGACY_TYPE_ALIASES = {
    "unica": LicenceType.PERPETUAL.value,
    "suscripcion": LicenceType.SUBSCRIPTION.value,
}

CUSTOMER_FIELDS = ("customer_email", "customer_phone", "customer_business", "customer_name")

_TIMESTAMP_FIELDS = (
    "created_at",
    "activated_at",
    "last_validation",
    "expires_at",
    "last_renewal",
    "deactivated_at",
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp, treating naive values as UTC.

    Unparseable values read as ``None``; callers decide whether to keep the
    raw text.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class Licence:
    """A single issued licence key and its activation state."""

    key: str
    licence_type: str
    created_at: Optional[datetime] = field(default_factory=utcnow)
    active: bool = True

    # Activation / binding
    activated_at: Optional[datetime] = None
    hardware_id: Optional[str] = None
    last_validation: Optional[datetime] = None

    # Subscription
    expires_at: Optional[datetime] = None
    renewal_count: int = 0
    last_renewal: Optional[datetime] = None
    payment_reference: Optional[str] = None

    deactivated_at: Optional[datetime] = None

    # Customer contact (fill-once)
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_business: Optional[str] = None
    customer_name: Optional[str] = None

    notifications: list[dict] = field(default_factory=list)

    # Keys found in the stored record that this model does not know about
    extra: dict = field(default_factory=dict)

    # Stored timestamp text that could not be parsed, written back unchanged
    unparsed: dict = field(default_factory=dict)

    @property
    def is_activated(self) -> bool:
        return self.activated_at is not None or "activated_at" in self.unparsed

    @property
    def is_bound(self) -> bool:
        """True once the licence is tied to a terminal."""
        return self.is_activated or self.hardware_id is not None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if not self.expires_at:
            return False
        return (now or utcnow()) > self.expires_at

    def fill_customer(self, **values) -> list[str]:
        """Set customer fields that are currently empty.

        Returns the names of the fields that were filled. Existing values
        are never overwritten.
        """
        filled = []
        for name in CUSTOMER_FIELDS:
            value = values.get(name)
            if value and not getattr(self, name):
                setattr(self, name, value)
                filled.append(name)
        return filled

    def customer_data(self) -> dict:
        return {
            "email": self.customer_email or "",
            "phone": self.customer_phone or "",
            "business": self.customer_business or "",
        }

    def display_business(self) -> str:
        return self.customer_business or self.customer_name or ""

    def _timestamp(self, name: str) -> Optional[str]:
        return format_timestamp(getattr(self, name)) or self.unparsed.get(name)

    def to_dict(self) -> dict:
        data = dict(self.extra)
        data.update({
            "key": self.key,
            "type": self.licence_type,
            "active": self.active,
            "created_at": self._timestamp("created_at"),
            "customer_email": self.customer_email,
            "customer_phone": self.customer_phone,
            "customer_business": self.customer_business,
            "customer_name": self.customer_name,
            "activated_at": self._timestamp("activated_at"),
            "hardware_id": self.hardware_id,
            "last_validation": self._timestamp("last_validation"),
            "renewal_count": self.renewal_count,
        })
        # Optional keys are only written once they have a value
        optional = {
            "expires_at": self._timestamp("expires_at"),
            "last_renewal": self._timestamp("last_renewal"),
            "payment_reference": self.payment_reference,
            "deactivated_at": self._timestamp("deactivated_at"),
        }
        data.update({k: v for k, v in optional.items() if v is not None})
        if self.notifications:
            data["notifications"] = list(self.notifications)
        return data

    @classmethod
    def from_dict(cls, data: dict, issues: Optional[list] = None) -> "Licence":
        """Build a licence from a stored record.

        Values that cannot be read are recorded in ``issues`` instead of
        raising. Unparseable timestamps keep their raw text and are written
        back unchanged; an unusable ``renewal_count`` reads as 0.
        """
        if issues is None:
            issues = []
        key = data.get("key", "")
        known = {f.name for f in fields(cls)} | {"type"}
        extra = {k: v for k, v in data.items() if k not in known}
        raw_type = data.get("type", data.get("licence_type", ""))
        if isinstance(raw_type, str):
            raw_type = LEGACY_TYPE_ALIASES.get(raw_type, raw_type)

        try:
            renewal_count = int(data.get("renewal_count") or 0)
        except (TypeError, ValueError):
            issues.append(f"Licence {key}: unusable renewal_count {data.get('renewal_count')!r}")
            renewal_count = 0

        notifications = data.get("notifications") or []
        if not isinstance(notifications, list):
            issues.append(f"Licence {key}: notifications is not a list")
            extra["notifications"] = notifications
            notifications = []

        kwargs = dict(
            key=key,
            licence_type=raw_type,
            active=bool(data.get("active", True)),
            hardware_id=data.get("hardware_id"),
            renewal_count=renewal_count,
            payment_reference=data.get("payment_reference"),
            notifications=list(notifications),
            extra=extra,
            unparsed={},
        )
        for name in _TIMESTAMP_FIELDS:
            raw = data.get(name)
            kwargs[name] = parse_timestamp(raw)
            if raw and kwargs[name] is None:
                issues.append(f"Licence {key}: unparseable {name} {raw!r}")
                kwargs["unparsed"][name] = raw
        for name in CUSTOMER_FIELDS:
            kwargs[name] = data.get(name) or None
        return cls(**kwargs)


def empty_stats(now: Optional[datetime] = None) -> dict:
    return {
        "total_licenses": 0,
        "active_licenses": 0,
        "created_at": format_timestamp(now or utcnow()),
    }


@dataclass
class LicenceDatabase:
    """The whole persisted store: licences keyed by licence key plus stats."""

    licences: dict[str, Licence] = field(default_factory=dict)
    stats: dict = field(default_factory=empty_stats)
    extra: dict = field(default_factory=dict)

    # Stored records that are not JSON objects, kept verbatim
    unreadable: dict = field(default_factory=dict)

    def get(self, key: str) -> Optional[Licence]:
        return self.licences.get(key)

    def add(self, licence: Licence) -> None:
        self.licences[licence.key] = licence

    def to_dict(self) -> dict:
        data = dict(self.extra)
        licences = dict(self.unreadable)
        licences.update({k: lic.to_dict() for k, lic in self.licences.items()})
        data["licenses"] = licences
        data["stats"] = dict(self.stats)
        return data

    @classmethod
    def from_dict(cls, data: dict, strict: bool = False) -> "LicenceDatabase":
        """Build the database from a stored document.

        By default every problem with an individual record is logged and the
        rest of the document is still used. With ``strict`` the same problems
        raise ``ValueError`` instead.
        """
        issues = []
        records = data.get("licenses") or {}
        extra = {k: v for k, v in data.items() if k not in ("licenses", "stats")}
        if not isinstance(records, dict):
            issues.append("licenses is not an object")
            extra["licenses_unreadable"] = records
            records = {}

        licences, unreadable = {}, {}
        for key, record in records.items():
            if isinstance(record, dict):
                licences[key] = Licence.from_dict(record, issues)
            else:
                issues.append(f"Licence {key} is not an object")
                unreadable[key] = record

        stats = data.get("stats") or empty_stats()
        if not isinstance(stats, dict):
            issues.append("stats is not an object")
            stats = empty_stats()

        if issues:
            if strict:
                raise ValueError("; ".join(issues))
            for issue in issues:
                logger.warning("Store document: %s", issue)
        return cls(licences=licences, stats=dict(stats), extra=extra, unreadable=unreadable)
