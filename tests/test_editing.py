import os
import unittest
from datetime import date
from unittest import mock

os.environ.setdefault("DB_URL", "sqlite:///:memory:")

from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

from subtrack import crud
from subtrack.db import Base
from subtrack.errors import RateUnavailable, SaveFailed, ValidationError
from subtrack.models import Currency, PaymentCycle, Subscription
from subtrack.services.editing import (
    INVALID_AMOUNT,
    INVALID_INPUT,
    INVALID_PAYMENT_DAY,
    REQUIRED_FIELDS_MISSING,
    SubscriptionForm,
    load_form,
    save_subscription,
    validate_form,
)


class StubRates:
    def __init__(self, rate: float = 150.0) -> None:
        self.rate = rate
        self.calls = 0

    def get_rate(self) -> float:
        self.calls += 1
        return self.rate


class BrokenRates:
    def get_rate(self) -> float:
        raise ConnectionError("rate service down")


class ValidateFormTests(unittest.TestCase):
    def test_blank_name_is_required_fields_missing(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            validate_form(SubscriptionForm(service_name="   ", amount="100"))
        self.assertEqual(ctx.exception.code, REQUIRED_FIELDS_MISSING)

    def test_blank_amount_is_required_fields_missing(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            validate_form(SubscriptionForm(service_name="Netflix", amount=""))
        self.assertEqual(ctx.exception.code, REQUIRED_FIELDS_MISSING)

    def test_bad_amounts_are_invalid_amount(self) -> None:
        for raw in ("abc", "0", "-5", "nan", "inf"):
            with self.subTest(amount=raw):
                with self.assertRaises(ValidationError) as ctx:
                    validate_form(SubscriptionForm(service_name="Netflix", amount=raw))
                self.assertEqual(ctx.exception.code, INVALID_AMOUNT)

    def test_payment_day_out_of_range(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            validate_form(SubscriptionForm(service_name="Netflix", amount="100", payment_day=32))
        self.assertEqual(ctx.exception.code, INVALID_PAYMENT_DAY)

    def test_valid_amount_is_parsed(self) -> None:
        self.assertEqual(validate_form(SubscriptionForm(service_name="Netflix", amount=" 1,980 ")), 1980.0)
        self.assertEqual(validate_form(SubscriptionForm(service_name="Netflix", amount="9.99")), 9.99)


class SaveSubscriptionTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = create_engine("sqlite:///:memory:")
        Base.metadata.create_all(bind=self.engine)
        self.Session = sessionmaker(bind=self.engine, autoflush=False, autocommit=False)
        self.db = self.Session()

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()

    def _count(self) -> int:
        return self.db.query(Subscription).count()

    def test_blank_name_is_rejected_before_any_write_or_fetch(self) -> None:
        rates = StubRates()
        form = SubscriptionForm(service_name="", amount="10", currency=Currency.USD)

        with mock.patch.object(crud, "insert_subscription") as insert, \
                mock.patch.object(crud, "update_subscription") as update:
            with self.assertRaises(ValidationError) as ctx:
                save_subscription(self.db, form, rates)

        self.assertEqual(ctx.exception.code, REQUIRED_FIELDS_MISSING)
        insert.assert_not_called()
        update.assert_not_called()
        self.assertEqual(rates.calls, 0)

    def test_too_long_name_is_rejected_before_rate_fetch(self) -> None:
        rates = StubRates()
        form = SubscriptionForm(service_name="x" * 201, amount="10", currency=Currency.USD)

        with self.assertRaises(ValidationError) as ctx:
            save_subscription(self.db, form, rates)

        self.assertEqual(ctx.exception.code, INVALID_INPUT)
        self.assertEqual(rates.calls, 0)
        self.assertEqual(self._count(), 0)

    def test_too_long_memo_is_rejected_before_rate_fetch(self) -> None:
        rates = StubRates()
        form = SubscriptionForm(service_name="ChatGPT", amount="10", currency=Currency.USD, memo="m" * 501)

        with self.assertRaises(ValidationError) as ctx:
            save_subscription(self.db, form, rates)

        self.assertEqual(ctx.exception.code, INVALID_INPUT)
        self.assertEqual(rates.calls, 0)

    def test_usd_amount_overflowing_after_conversion_is_rejected(self) -> None:
        rates = StubRates(150.0)
        form = SubscriptionForm(service_name="ChatGPT", amount="1e307", currency=Currency.USD)

        with self.assertRaises(ValidationError) as ctx:
            save_subscription(self.db, form, rates)

        self.assertEqual(ctx.exception.code, INVALID_AMOUNT)
        self.assertEqual(rates.calls, 1)
        self.assertEqual(self._count(), 0)
        self.assertEqual(crud.sum_active_amount_by_cycle(self.db, PaymentCycle.MONTHLY), 0.0)

    def test_usd_is_converted_and_stored_as_jpy(self) -> None:
        form = SubscriptionForm(service_name="ChatGPT", amount="10", currency=Currency.USD)

        sub_id = save_subscription(self.db, form, StubRates(150.0))

        sub = crud.get_subscription(self.db, sub_id)
        self.assertEqual(sub.currency, "JPY")
        self.assertEqual(sub.amount, 1500.0)

    def test_jpy_is_stored_unchanged(self) -> None:
        rates = StubRates()
        form = SubscriptionForm(
            service_name="Netflix",
            amount="1980",
            payment_cycle=PaymentCycle.MONTHLY,
            payment_day=5,
            expiration_date=date(2027, 3, 31),
            memo="家族で共有",
        )

        sub_id = save_subscription(self.db, form, rates)

        sub = crud.get_subscription(self.db, sub_id)
        self.assertEqual(sub.amount, 1980.0)
        self.assertEqual(sub.currency, "JPY")
        self.assertEqual(sub.payment_day, 5)
        self.assertEqual(sub.expiration_date, date(2027, 3, 31))
        self.assertEqual(sub.memo, "家族で共有")
        self.assertEqual(rates.calls, 0)

    def test_existing_id_updates_instead_of_inserting(self) -> None:
        sub_id = save_subscription(self.db, SubscriptionForm(service_name="Spotify", amount="980"), StubRates())

        form = load_form(self.db, sub_id)
        self.assertTrue(form.is_edit_mode)
        form.amount = "1080"
        self.assertEqual(save_subscription(self.db, form, StubRates()), sub_id)

        self.assertEqual(self._count(), 1)
        self.assertEqual(crud.get_subscription(self.db, sub_id).amount, 1080.0)

    def test_update_of_missing_id_is_save_failed(self) -> None:
        form = SubscriptionForm(id=99, service_name="Ghost", amount="100")
        with self.assertRaises(SaveFailed):
            save_subscription(self.db, form, StubRates())
        self.assertEqual(self._count(), 0)

    def test_rate_source_error_aborts_save(self) -> None:
        form = SubscriptionForm(service_name="ChatGPT", amount="20", currency=Currency.USD)
        with self.assertRaises(RateUnavailable):
            save_subscription(self.db, form, BrokenRates())
        self.assertEqual(self._count(), 0)

    def test_storage_error_is_save_failed(self) -> None:
        form = SubscriptionForm(service_name="Netflix", amount="1980")
        err = OperationalError("INSERT", {}, Exception("disk I/O error"))
        with mock.patch.object(crud, "insert_subscription", side_effect=err):
            with self.assertRaises(SaveFailed) as ctx:
                save_subscription(self.db, form, StubRates())
        self.assertEqual(ctx.exception.code, "save_failed")


class LoadFormTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = create_engine("sqlite:///:memory:")
        Base.metadata.create_all(bind=self.engine)
        self.db = sessionmaker(bind=self.engine)()

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()

    def test_new_form_for_zero_or_unknown_id(self) -> None:
        self.assertFalse(load_form(self.db, 0).is_edit_mode)
        self.assertEqual(load_form(self.db, 42), SubscriptionForm())

    def test_prefills_from_existing_row(self) -> None:
        sub_id = save_subscription(
            self.db,
            SubscriptionForm(service_name="Adobe", amount="72336", payment_cycle=PaymentCycle.YEARLY, payment_day=15),
            StubRates(),
        )
        form = load_form(self.db, sub_id)

        self.assertEqual(form.id, sub_id)
        self.assertEqual(form.service_name, "Adobe")
        self.assertEqual(form.amount, "72336")
        self.assertEqual(form.currency, Currency.JPY)
        self.assertEqual(form.payment_cycle, PaymentCycle.YEARLY)
        self.assertEqual(form.payment_day, 15)


if __name__ == "__main__":
    unittest.main()
