"""Licence lifecycle: creation, activation on first validation, renewal, deactivation."""

import calendar
import logging
import math
from datetime import datetime, timedelta
from typing import Callable, Optional

from licence.generator import KeyGenerator
from licence.models import CUSTOMER_FIELDS, LEGACY_TYPE_ALIASES, Licence, LicenceType, utcnow
from licence.results import (
    OperationResult,
    RenewalResult,
    ResultCode,
    ValidationResult,
)
from licence.store import LicenceStore

logger = logging.getLogger(__name__)

ONE_DAY_SECONDS = 24 * 60 * 60


def add_months(value: datetime, months: int) -> datetime:
    """Add calendar months to a datetime.

    A day that does not exist in the target month rolls over into the
    next one, so 31 January plus one month is 2 or 3 March.
    """
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    if value.day <= last_day:
        return value.replace(year=year, month=month)
    overflow = value.day - last_day
    return value.replace(year=year, month=month, day=last_day) + timedelta(days=overflow)


def days_until(target: datetime, now: datetime) -> int:
    """Whole days until ``target``, rounded up."""
    return math.ceil((target - now).total_seconds() / ONE_DAY_SECONDS)


class LicenceLifecycle:
    """Apply licence state transitions against a licence store.

    Each mutating operation runs a full load-mutate-save cycle while holding
    the store lock. Domain failures come back as results with a
    :class:`ResultCode`; only :class:`StorageError` propagates.
    """

    def __init__(
        self,
        store: LicenceStore,
        key_generator: Optional[KeyGenerator] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self._keys = key_generator or KeyGenerator()
        self._clock = clock

    # ---- Administration ----

    def create(
        self,
        licence_type=LicenceType.PERPETUAL,
        subscription_months: Optional[int] = None,
        customer_email: str = "",
        customer_name: str = "",
    ) -> Licence:
        """Issue a new licence and persist it.

        Args:
            licence_type: ``perpetual`` or ``subscription``.
            subscription_months: Subscription length. Values below one
                (or ``None``) are raised to one month.
            customer_email: Optional contact email.
            customer_name: Optional customer name.

        Returns:
            The created Licence.

        Raises:
            ValueError: Unknown licence type.
        """
        licence_type = LicenceType(LEGACY_TYPE_ALIASES.get(licence_type, licence_type))
        now = self._clock()

        with self._store.lock:
            database = self._store.load()
            key = self._keys.generate()
            while key in database.licences or key in database.unreadable:
                key = self._keys.generate()

            licence = Licence(
                key=key,
                licence_type=licence_type.value,
                created_at=now,
                customer_email=customer_email or None,
                customer_name=customer_name or None,
            )
            if licence_type == LicenceType.SUBSCRIPTION:
                months = max(subscription_months or 0, 1)
                licence.expires_at = add_months(now, months)

            database.add(licence)
            database.stats["total_licenses"] = database.stats.get("total_licenses", 0) + 1
            self._store.save(database)

        logger.info("Created %s licence %s", licence.licence_type, licence.key)
        return licence

    def deactivate(self, key: str) -> OperationResult:
        """Administratively switch a licence off."""
        if not key:
            return OperationResult(success=False, code=ResultCode.MISSING_KEY)

        with self._store.lock:
            database = self._store.load()
            licence = database.get(key)
            if licence is None:
                return OperationResult(success=False, code=ResultCode.INVALID_KEY, licence_key=key)
            licence.active = False
            licence.deactivated_at = self._clock()
            self._store.save(database)

        logger.info("Deactivated licence %s", key)
        return OperationResult(success=True, code=ResultCode.DEACTIVATED, licence_key=key)

    def renew(self, key: str, months: int = 1, payment_reference: str = "") -> RenewalResult:
        """Extend a subscription and reactivate it.

        Unexpired subscriptions are extended from their current expiry;
        expired ones restart from now.
        """
        if not key:
            return RenewalResult(success=False, code=ResultCode.MISSING_KEY)
        if isinstance(months, bool) or not isinstance(months, int) or months < 1:
            return RenewalResult(success=False, code=ResultCode.INVALID_MONTHS, licence_key=key)

        with self._store.lock:
            database = self._store.load()
            licence = database.get(key)
            if licence is None:
                return RenewalResult(success=False, code=ResultCode.INVALID_KEY, licence_key=key)
            if licence.licence_type != LicenceType.SUBSCRIPTION:
                return RenewalResult(
                    success=False, code=ResultCode.NOT_A_SUBSCRIPTION, licence_key=key
                )

            now = self._clock()
            if licence.expires_at and licence.expires_at > now:
                base = licence.expires_at
            else:
                base = now
            licence.expires_at = add_months(base, months)
            licence.last_renewal = now
            licence.renewal_count += 1
            if payment_reference:
                licence.payment_reference = payment_reference
            licence.active = True
            self._store.save(database)

        logger.info("Renewed subscription %s until %s", key, licence.expires_at.isoformat())
        return RenewalResult(
            success=True,
            code=ResultCode.RENEWED,
            licence_key=key,
            new_expiration=licence.expires_at,
            months_added=months,
            renewal_count=licence.renewal_count,
        )

    def record_notification(self, key: str, notification_type: str = "email") -> OperationResult:
        """Record that a renewal reminder was sent for a licence."""
        if not key:
            return OperationResult(success=False, code=ResultCode.MISSING_KEY)

        with self._store.lock:
            database = self._store.load()
            licence = database.get(key)
            if licence is None:
                return OperationResult(success=False, code=ResultCode.INVALID_KEY, licence_key=key)
            licence.notifications.append({
                "type": notification_type,
                "sent_at": self._clock().isoformat(),
                "message": "Subscription renewal reminder",
            })
            self._store.save(database)

        logger.info("Recorded %s notification for %s", notification_type, key)
        return OperationResult(
            success=True, code=ResultCode.NOTIFICATION_RECORDED, licence_key=key
        )

    # ---- Queries ----

    def get(self, key: str) -> Optional[Licence]:
        return self._store.load().get(key)

    def list_all(self) -> list[Licence]:
        return list(self._store.load().licences.values())

    # ---- Validation ----

    def validate(
        self,
        key: str,
        hardware_id: Optional[str],
        customer: Optional[dict] = None,
    ) -> ValidationResult:
        """Validate a licence for a POS terminal, activating it on first use.

        Args:
            key: Licence key supplied by the terminal.
            hardware_id: Opaque machine identifier; may be empty.
            customer: Optional ``customer_email`` / ``customer_phone`` /
                ``customer_business`` values, stored only where empty.

        Returns:
            ValidationResult; ``success`` is False for every refusal.
        """
        if not key:
            return ValidationResult(success=False, code=ResultCode.MISSING_KEY)
        customer = customer or {}

        with self._store.lock:
            database = self._store.load()
            licence = database.get(key)
            if licence is None:
                return ValidationResult(success=False, code=ResultCode.INVALID_KEY)
            if not licence.active:
                return ValidationResult(success=False, code=ResultCode.INACTIVE_LICENSE)

            now = self._clock()
            if licence.licence_type == LicenceType.PERPETUAL:
                return self._validate_perpetual(database, licence, hardware_id, customer, now)
            if licence.licence_type == LicenceType.SUBSCRIPTION:
                return self._validate_subscription(database, licence, hardware_id, customer, now)

        return ValidationResult(success=False, code=ResultCode.INVALID_LICENSE_TYPE)

    def _validate_perpetual(self, database, licence, hardware_id, customer, now):
        # A stored hardware binding is never replaced, even without activated_at
        if not licence.is_bound:
            licence.activated_at = now
            licence.hardware_id = hardware_id
            licence.last_validation = now
            licence.fill_customer(**customer)
            database.stats["active_licenses"] = database.stats.get("active_licenses", 0) + 1
            self._store.save(database)
            logger.info("Activated licence %s on hardware %s", licence.key, hardware_id)
            return ValidationResult(
                success=True,
                code=ResultCode.ACTIVATED,
                licence_type=licence.licence_type,
                activated_at=licence.activated_at,
                customer_registered=any(customer.get(f) for f in CUSTOMER_FIELDS),
            )

        if licence.hardware_id != hardware_id:
            logger.warning(
                "Hardware mismatch for licence %s: bound to %s, presented %s",
                licence.key, licence.hardware_id, hardware_id,
            )
            return ValidationResult(success=False, code=ResultCode.HARDWARE_MISMATCH)

        licence.last_validation = now
        if licence.fill_customer(**customer):
            self._store.save(database)
        return ValidationResult(
            success=True,
            code=ResultCode.VALID,
            licence_type=licence.licence_type,
            activated_at=licence.activated_at,
            customer_data=licence.customer_data(),
        )

    def _validate_subscription(self, database, licence, hardware_id, customer, now):
        if licence.expires_at is None or now > licence.expires_at:
            return ValidationResult(
                success=False,
                code=ResultCode.SUBSCRIPTION_EXPIRED,
                expired_at=licence.expires_at,
            )

        licence.last_validation = now
        # Subscriptions bind lazily and are never re-checked against hardware
        if not licence.hardware_id:
            licence.hardware_id = hardware_id
        licence.fill_customer(**customer)
        self._store.save(database)
        return ValidationResult(
            success=True,
            code=ResultCode.VALID,
            licence_type=licence.licence_type,
            activated_at=licence.activated_at,
            expires_at=licence.expires_at,
            days_remaining=days_until(licence.expires_at, now),
            customer_data=licence.customer_data(),
        )
