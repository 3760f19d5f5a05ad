"""Reporting over the licence store: stats, customers, expiring subscriptions, CSV export."""

import csv
import io
from datetime import datetime, timedelta, timezone
from typing import Callable

from licence.lifecycle import days_until
from licence.models import LicenceDatabase, LicenceType, format_timestamp, utcnow
from licence.store import LicenceStore

NOT_REGISTERED = "Not registered"
CSV_HEADERS = [
    "License Key", "Email", "Phone", "Business",
    "License Type", "Activated At", "Last Validation",
]


def _activation_order(licence) -> datetime:
    # Activations with an unreadable timestamp sort last
    return licence.activated_at or datetime.min.replace(tzinfo=timezone.utc)


def compute_stats(database: LicenceDatabase) -> dict:
    """Derive statistics from the licence records.

    Counters persisted in ``stats`` are only advisory; every figure here is
    recomputed from the licences themselves.
    """
    licences = list(database.licences.values())
    activated = [lic for lic in licences if lic.is_activated]
    with_email = sum(1 for lic in activated if lic.customer_email)
    stats = dict(database.stats)
    stats.update({
        "total_licenses": len(licences),
        "active_licenses": len(activated),
        "activated_licenses": len(activated),
        "perpetual_licenses": sum(
            1 for lic in licences if lic.licence_type == LicenceType.PERPETUAL
        ),
        "subscription_licenses": sum(
            1 for lic in licences if lic.licence_type == LicenceType.SUBSCRIPTION
        ),
        "customers_with_email": with_email,
        "customers_with_phone": sum(1 for lic in activated if lic.customer_phone),
        "customers_with_business": sum(1 for lic in activated if lic.display_business()),
        "completion_rate": round(with_email / len(activated) * 100) if activated else 0,
    })
    return stats


class ReportGenerator:
    """Read-only reports for the admin API and CLI."""

    def __init__(self, store: LicenceStore, clock: Callable[[], datetime] = utcnow):
        self._store = store
        self._clock = clock

    def _activated(self) -> list:
        return [lic for lic in self._store.load().licences.values() if lic.is_activated]

    @staticmethod
    def _customer_row(licence) -> dict:
        return {
            "license_key": licence.key,
            "email": licence.customer_email or NOT_REGISTERED,
            "phone": licence.customer_phone or NOT_REGISTERED,
            "business": licence.display_business() or NOT_REGISTERED,
            "license_type": licence.licence_type,
            "activated_at": format_timestamp(licence.activated_at),
            "last_validation": format_timestamp(licence.last_validation),
        }

    def status_report(self, recent: int = 10) -> dict:
        database = self._store.load()
        activated = sorted(
            (lic for lic in database.licences.values() if lic.is_activated),
            key=_activation_order,
            reverse=True,
        )
        return {
            "stats": compute_stats(database),
            "recent_activations": [self._customer_row(lic) for lic in activated[:recent]],
        }

    def customers(self) -> list[dict]:
        """Activated licences with their customer data, newest first."""
        rows = []
        for lic in sorted(self._activated(), key=_activation_order, reverse=True):
            row = self._customer_row(lic)
            row["hardware_id"] = lic.hardware_id
            row["expires_at"] = format_timestamp(lic.expires_at)
            rows.append(row)
        return rows

    @staticmethod
    def _subscription_row(licence) -> dict:
        return {
            "license_key": licence.key,
            "customer_email": licence.customer_email or NOT_REGISTERED,
            "customer_phone": licence.customer_phone or NOT_REGISTERED,
            "customer_business": licence.display_business() or NOT_REGISTERED,
            "expires_at": format_timestamp(licence.expires_at),
            "activated_at": format_timestamp(licence.activated_at),
            "last_validation": format_timestamp(licence.last_validation),
            "renewal_count": licence.renewal_count,
            "active": licence.active,
        }

    def _subscriptions(self) -> list:
        return [
            lic for lic in self._store.load().licences.values()
            if lic.licence_type == LicenceType.SUBSCRIPTION and lic.expires_at
        ]

    def expiring_subscriptions(self, days: int = 7) -> list[dict]:
        """Subscriptions expiring between now and ``days`` from now, soonest first."""
        now = self._clock()
        horizon = now + timedelta(days=days)
        expiring = sorted(
            (lic for lic in self._subscriptions() if now <= lic.expires_at <= horizon),
            key=lambda lic: lic.expires_at,
        )
        rows = []
        for lic in expiring:
            row = self._subscription_row(lic)
            row["days_until_expiration"] = days_until(lic.expires_at, now)
            rows.append(row)
        return rows

    def expired_subscriptions(self) -> list[dict]:
        """Subscriptions already past expiry, longest expired first."""
        now = self._clock()
        expired = sorted(
            (lic for lic in self._subscriptions() if lic.expires_at < now),
            key=lambda lic: lic.expires_at,
        )
        rows = []
        for lic in expired:
            row = self._subscription_row(lic)
            row["days_expired"] = days_until(now, lic.expires_at)
            rows.append(row)
        return rows

    def search_customers(self, query: str) -> list[dict]:
        """Substring search over customer fields and licence key."""
        term = query.lower()
        results = []
        for lic in self._activated():
            haystacks = [
                (lic.customer_email or "").lower(),
                lic.customer_phone or "",
                (lic.customer_business or "").lower(),
                (lic.customer_name or "").lower(),
            ]
            if any(term in h for h in haystacks if h) or query.upper() in lic.key:
                results.append(self._customer_row(lic))
        return results

    def export_customers_csv(self) -> str:
        """Render activated licences as CSV."""
        buffer = io.StringIO()
        writer = csv.writer(buffer)
        writer.writerow(CSV_HEADERS)
        for lic in self._activated():
            writer.writerow([
                lic.key,
                lic.customer_email or "",
                lic.customer_phone or "",
                lic.display_business(),
                lic.licence_type,
                format_timestamp(lic.activated_at) or "",
                format_timestamp(lic.last_validation) or "",
            ])
        return buffer.getvalue()

