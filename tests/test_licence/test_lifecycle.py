"""Tests for the licence lifecycle."""

import threading
import unittest
from datetime import datetime, timedelta, timezone

from licence.exceptions import StorageError
from licence.lifecycle import LicenceLifecycle, add_months, days_until
from licence.models import LicenceType
from licence.results import ResultCode
from licence.store import InMemoryLicenceStore

T0 = datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)


class FakeClock:

    def __init__(self, now=T0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kw):
        self.now += timedelta(**kw)


class LifecycleTestCase(unittest.TestCase):

    def setUp(self):
        self.store = InMemoryLicenceStore()
        self.clock = FakeClock()
        self.lifecycle = LicenceLifecycle(self.store, clock=self.clock)

    def stored(self, key):
        return self.store.load().get(key)


class TestMonthArithmetic(unittest.TestCase):

    def test_simple_month(self):
        self.assertEqual(add_months(T0, 1), T0.replace(month=4))

    def test_year_rollover(self):
        start = datetime(2024, 11, 15, tzinfo=timezone.utc)
        self.assertEqual(add_months(start, 3), datetime(2025, 2, 15, tzinfo=timezone.utc))

    def test_day_overflow_rolls_into_next_month(self):
        jan31 = datetime(2024, 1, 31, tzinfo=timezone.utc)
        self.assertEqual(add_months(jan31, 1), datetime(2024, 3, 2, tzinfo=timezone.utc))
        jan31_2023 = datetime(2023, 1, 31, tzinfo=timezone.utc)
        self.assertEqual(add_months(jan31_2023, 1), datetime(2023, 3, 3, tzinfo=timezone.utc))

    def test_days_until_rounds_up(self):
        self.assertEqual(days_until(T0 + timedelta(hours=1), T0), 1)
        self.assertEqual(days_until(T0 + timedelta(days=2), T0), 2)
        self.assertEqual(days_until(T0 + timedelta(days=2, seconds=1), T0), 3)


class TestCreate(LifecycleTestCase):

    def test_create_perpetual(self):
        licence = self.lifecycle.create()
        self.assertEqual(licence.licence_type, LicenceType.PERPETUAL)
        self.assertTrue(licence.active)
        self.assertIsNone(licence.activated_at)
        self.assertIsNone(licence.hardware_id)
        self.assertIsNone(licence.expires_at)
        self.assertIsNotNone(self.stored(licence.key))
        self.assertEqual(self.store.document["stats"]["total_licenses"], 1)

    def test_create_subscription_sets_expiry(self):
        licence = self.lifecycle.create("subscription", subscription_months=3)
        self.assertEqual(licence.expires_at, add_months(T0, 3))
        self.assertEqual(self.stored(licence.key).expires_at, add_months(T0, 3))

    def test_subscription_months_default_and_floor(self):
        for months in (None, 0, -4):
            licence = self.lifecycle.create("subscription", subscription_months=months)
            self.assertEqual(licence.expires_at, add_months(T0, 1))

    def test_legacy_type_names(self):
        self.assertEqual(self.lifecycle.create("unica").licence_type, LicenceType.PERPETUAL)
        self.assertEqual(
            self.lifecycle.create("suscripcion").licence_type, LicenceType.SUBSCRIPTION
        )

    def test_invalid_type_raises(self):
        with self.assertRaises(ValueError):
            self.lifecycle.create("lifetime")

    def test_customer_fields_stored(self):
        licence = self.lifecycle.create(customer_email="a@x.com", customer_name="Ann")
        stored = self.stored(licence.key)
        self.assertEqual(stored.customer_email, "a@x.com")
        self.assertEqual(stored.customer_name, "Ann")

    def test_key_collision_is_redrawn(self):
        class SequenceGenerator:
            def __init__(self, keys):
                self.keys = list(keys)

            def generate(self):
                return self.keys.pop(0)

        lifecycle = LicenceLifecycle(
            self.store,
            key_generator=SequenceGenerator(["AAAA-AAAA-AAAA-AAAA"] * 2 + ["BBBB-BBBB-BBBB-BBBB"]),
            clock=self.clock,
        )
        first = lifecycle.create()
        second = lifecycle.create()
        self.assertEqual(first.key, "AAAA-AAAA-AAAA-AAAA")
        self.assertEqual(second.key, "BBBB-BBBB-BBBB-BBBB")
        self.assertEqual(len(self.store.load().licences), 2)

    def test_concurrent_creates_are_all_persisted(self):
        threads = [threading.Thread(target=self.lifecycle.create) for _ in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        self.assertEqual(len(self.store.load().licences), 20)


class TestValidatePerpetual(LifecycleTestCase):

    def setUp(self):
        super().setUp()
        self.key = self.lifecycle.create().key

    def test_missing_key(self):
        result = self.lifecycle.validate("", "hw-1")
        self.assertFalse(result.success)
        self.assertEqual(result.code, ResultCode.MISSING_KEY)

    def test_unknown_key(self):
        result = self.lifecycle.validate("ZZZZ-ZZZZ-ZZZZ-ZZZZ", "hw-1")
        self.assertEqual(result.code, ResultCode.INVALID_KEY)

    def test_first_validation_activates(self):
        result = self.lifecycle.validate(self.key, "hw-1")
        self.assertTrue(result.success)
        self.assertEqual(result.code, ResultCode.ACTIVATED)
        self.assertEqual(result.activated_at, T0)
        self.assertFalse(result.customer_registered)

        stored = self.stored(self.key)
        self.assertEqual(stored.hardware_id, "hw-1")
        self.assertEqual(stored.activated_at, T0)
        self.assertEqual(stored.last_validation, T0)
        self.assertEqual(self.store.document["stats"]["active_licenses"], 1)

    def test_activation_registers_customer(self):
        result = self.lifecycle.validate(
            self.key, "hw-1", {"customer_email": "a@x.com", "customer_business": "Cafe"}
        )
        self.assertTrue(result.customer_registered)
        stored = self.stored(self.key)
        self.assertEqual(stored.customer_email, "a@x.com")
        self.assertEqual(stored.customer_business, "Cafe")

    def test_same_hardware_is_valid(self):
        self.lifecycle.validate(self.key, "hw-1")
        self.clock.advance(days=3)
        result = self.lifecycle.validate(self.key, "hw-1")
        self.assertTrue(result.success)
        self.assertEqual(result.code, ResultCode.VALID)
        self.assertEqual(result.activated_at, T0)
        self.assertEqual(result.customer_data, {"email": "", "phone": "", "business": ""})

    def test_other_hardware_is_refused_without_mutation(self):
        self.lifecycle.validate(self.key, "hw-1")
        before = self.store.load().to_dict()
        writes = self.store.writes

        result = self.lifecycle.validate(self.key, "hw-2", {"customer_email": "b@x.com"})
        self.assertFalse(result.success)
        self.assertEqual(result.code, ResultCode.HARDWARE_MISMATCH)
        self.assertEqual(self.store.writes, writes)
        self.assertEqual(self.store.load().to_dict(), before)

    def test_hardware_binding_is_case_sensitive(self):
        self.lifecycle.validate(self.key, "HW-1")
        self.assertEqual(self.lifecycle.validate(self.key, "hw-1").code, ResultCode.HARDWARE_MISMATCH)

    def test_unreadable_activation_time_keeps_binding(self):
        record = self.store.document["licenses"][self.key]
        record.update(activated_at="yesterday", hardware_id="hw-1")

        with self.assertLogs("licence.models", level="WARNING"):
            result = self.lifecycle.validate(self.key, "hw-2")
        self.assertEqual(result.code, ResultCode.HARDWARE_MISMATCH)

        self.lifecycle.validate(self.key, "hw-1", {"customer_email": "a@x.com"})
        record = self.store.document["licenses"][self.key]
        self.assertEqual(record["hardware_id"], "hw-1")
        self.assertEqual(record["activated_at"], "yesterday")
        self.assertEqual(record["customer_email"], "a@x.com")

    def test_bound_hardware_without_activation_time_is_not_rebound(self):
        self.store.document["licenses"][self.key]["hardware_id"] = "hw-1"
        result = self.lifecycle.validate(self.key, "hw-2")
        self.assertEqual(result.code, ResultCode.HARDWARE_MISMATCH)
        self.assertEqual(self.stored(self.key).hardware_id, "hw-1")
        self.assertIsNone(self.stored(self.key).activated_at)

    def test_empty_hardware_binds_as_given(self):
        self.assertEqual(self.lifecycle.validate(self.key, "").code, ResultCode.ACTIVATED)
        self.assertEqual(self.lifecycle.validate(self.key, "").code, ResultCode.VALID)
        self.assertEqual(
            self.lifecycle.validate(self.key, "hw-1").code, ResultCode.HARDWARE_MISMATCH
        )

    def test_customer_fields_fill_once(self):
        self.lifecycle.validate(self.key, "hw-1", {"customer_email": "a@x.com"})
        result = self.lifecycle.validate(
            self.key, "hw-1", {"customer_email": "b@x.com", "customer_phone": "555"}
        )
        self.assertEqual(result.customer_data["email"], "a@x.com")
        self.assertEqual(result.customer_data["phone"], "555")
        stored = self.stored(self.key)
        self.assertEqual(stored.customer_email, "a@x.com")
        self.assertEqual(stored.customer_phone, "555")

    def test_deactivated_is_refused(self):
        self.lifecycle.validate(self.key, "hw-1")
        self.lifecycle.deactivate(self.key)
        result = self.lifecycle.validate(self.key, "hw-1")
        self.assertFalse(result.success)
        self.assertEqual(result.code, ResultCode.INACTIVE_LICENSE)

    def test_unknown_stored_type(self):
        self.store.document["licenses"][self.key]["type"] = "lifetime"
        result = self.lifecycle.validate(self.key, "hw-1")
        self.assertEqual(result.code, ResultCode.INVALID_LICENSE_TYPE)

    def test_storage_failure_propagates(self):
        self.store.fail_writes = True
        with self.assertRaises(StorageError):
            self.lifecycle.validate(self.key, "hw-1")


class TestValidateSubscription(LifecycleTestCase):

    def setUp(self):
        super().setUp()
        self.key = self.lifecycle.create("subscription", subscription_months=1).key
        self.expires = add_months(T0, 1)

    def test_valid_subscription_reports_days_remaining(self):
        self.clock.advance(days=10)
        result = self.lifecycle.validate(self.key, "hw-1")
        self.assertTrue(result.success)
        self.assertEqual(result.code, ResultCode.VALID)
        self.assertEqual(result.expires_at, self.expires)
        self.assertEqual(result.days_remaining, days_until(self.expires, self.clock.now))
        self.assertIsNone(result.activated_at)

    def test_binds_hardware_lazily_and_never_rechecks(self):
        self.lifecycle.validate(self.key, "hw-1")
        self.assertEqual(self.stored(self.key).hardware_id, "hw-1")
        result = self.lifecycle.validate(self.key, "hw-2")
        self.assertTrue(result.success)
        self.assertEqual(self.stored(self.key).hardware_id, "hw-1")

    def test_validation_updates_last_validation(self):
        self.clock.advance(days=2)
        self.lifecycle.validate(self.key, "hw-1", {"customer_phone": "555"})
        stored = self.stored(self.key)
        self.assertEqual(stored.last_validation, self.clock.now)
        self.assertEqual(stored.customer_phone, "555")

    def test_valid_at_exact_expiry(self):
        self.clock.now = self.expires
        self.assertTrue(self.lifecycle.validate(self.key, "hw-1").success)

    def test_expired_subscription(self):
        self.clock.now = self.expires + timedelta(seconds=1)
        writes = self.store.writes
        result = self.lifecycle.validate(self.key, "hw-1")
        self.assertFalse(result.success)
        self.assertEqual(result.code, ResultCode.SUBSCRIPTION_EXPIRED)
        self.assertEqual(result.expired_at, self.expires)
        self.assertEqual(self.store.writes, writes)

    def test_subscription_without_expiry_is_expired(self):
        del self.store.document["licenses"][self.key]["expires_at"]
        result = self.lifecycle.validate(self.key, "hw-1")
        self.assertEqual(result.code, ResultCode.SUBSCRIPTION_EXPIRED)


class TestRenew(LifecycleTestCase):

    def setUp(self):
        super().setUp()
        self.key = self.lifecycle.create("subscription", subscription_months=1).key
        self.expires = add_months(T0, 1)

    def test_renew_unexpired_extends_from_expiry(self):
        result = self.lifecycle.renew(self.key, 2, "PAY-1")
        self.assertTrue(result.success)
        self.assertEqual(result.code, ResultCode.RENEWED)
        self.assertEqual(result.new_expiration, add_months(self.expires, 2))
        self.assertEqual(result.months_added, 2)
        self.assertEqual(result.renewal_count, 1)

        stored = self.stored(self.key)
        self.assertEqual(stored.payment_reference, "PAY-1")
        self.assertEqual(stored.last_renewal, T0)

    def test_renew_expired_restarts_from_now(self):
        self.clock.now = self.expires + timedelta(days=5)
        result = self.lifecycle.renew(self.key, 1)
        self.assertEqual(result.new_expiration, add_months(self.clock.now, 1))
        self.assertTrue(self.lifecycle.validate(self.key, "hw-1").success)

    def test_renew_reactivates(self):
        self.lifecycle.deactivate(self.key)
        self.lifecycle.renew(self.key, 1)
        self.assertTrue(self.stored(self.key).active)

    def test_renewal_count_increments(self):
        self.lifecycle.renew(self.key)
        result = self.lifecycle.renew(self.key)
        self.assertEqual(result.renewal_count, 2)

    def test_renew_perpetual_is_refused(self):
        key = self.lifecycle.create().key
        result = self.lifecycle.renew(key, 1)
        self.assertFalse(result.success)
        self.assertEqual(result.code, ResultCode.NOT_A_SUBSCRIPTION)
        self.assertIsNone(self.stored(key).expires_at)

    def test_renew_unknown_key(self):
        self.assertEqual(self.lifecycle.renew("ZZZZ-ZZZZ-ZZZZ-ZZZZ").code, ResultCode.INVALID_KEY)

    def test_renew_missing_key(self):
        self.assertEqual(self.lifecycle.renew("").code, ResultCode.MISSING_KEY)

    def test_renew_invalid_months(self):
        for months in (0, -1, "2", 1.5, True):
            result = self.lifecycle.renew(self.key, months)
            self.assertEqual(result.code, ResultCode.INVALID_MONTHS)
        self.assertEqual(self.stored(self.key).expires_at, self.expires)


class TestDeactivateAndNotify(LifecycleTestCase):

    def test_deactivate(self):
        key = self.lifecycle.create().key
        result = self.lifecycle.deactivate(key)
        self.assertTrue(result.success)
        self.assertEqual(result.code, ResultCode.DEACTIVATED)
        stored = self.stored(key)
        self.assertFalse(stored.active)
        self.assertEqual(stored.deactivated_at, T0)

    def test_deactivate_unknown(self):
        result = self.lifecycle.deactivate("ZZZZ-ZZZZ-ZZZZ-ZZZZ")
        self.assertFalse(result.success)
        self.assertEqual(result.code, ResultCode.INVALID_KEY)

    def test_record_notification(self):
        key = self.lifecycle.create("subscription").key
        result = self.lifecycle.record_notification(key, "sms")
        self.assertTrue(result.success)
        notifications = self.stored(key).notifications
        self.assertEqual(len(notifications), 1)
        self.assertEqual(notifications[0]["type"], "sms")
        self.assertEqual(notifications[0]["sent_at"], T0.isoformat())

    def test_record_notification_unknown(self):
        result = self.lifecycle.record_notification("ZZZZ-ZZZZ-ZZZZ-ZZZZ")
        self.assertEqual(result.code, ResultCode.INVALID_KEY)


if __name__ == "__main__":
    unittest.main()
