from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date
from typing import Protocol

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from subtrack import crud
from subtrack.errors import RateUnavailable, SaveFailed, SubscriptionNotFound, ValidationError
from subtrack.models import Currency, PaymentCycle
from subtrack.schemas import SubscriptionCreate
from subtrack.services.exchange_rate import convert
from subtrack.utils.logger import get_logger

logger = get_logger(__name__)

REQUIRED_FIELDS_MISSING = "required_fields_missing"
INVALID_AMOUNT = "invalid_amount"
INVALID_PAYMENT_DAY = "invalid_payment_day"
INVALID_INPUT = "invalid_input"


class RateSource(Protocol):
    def get_rate(self) -> float: ...


@dataclass
class SubscriptionForm:
    """追加/編集画面の入力。amount は入力された文字列のまま持つ。"""

    id: int = 0
    service_name: str = ""
    amount: str = ""
    currency: Currency = Currency.JPY
    payment_cycle: PaymentCycle = PaymentCycle.MONTHLY
    payment_day: int = 1
    expiration_date: date | None = None
    memo: str = ""

    @property
    def is_edit_mode(self) -> bool:
        return self.id != 0


def _format_amount(amount: float) -> str:
    return str(int(amount)) if float(amount).is_integer() else repr(float(amount))


def load_form(db: Session, sub_id: int) -> SubscriptionForm:
    if sub_id == 0:
        return SubscriptionForm()
    sub = crud.get_subscription(db, sub_id)
    if sub is None:
        return SubscriptionForm()
    try:
        currency = Currency(sub.currency)
    except ValueError:
        currency = Currency.JPY
    return SubscriptionForm(
        id=sub.id,
        service_name=sub.service_name,
        amount=_format_amount(sub.amount),
        currency=currency,
        payment_cycle=sub.payment_cycle,
        payment_day=sub.payment_day,
        expiration_date=sub.expiration_date,
        memo=sub.memo or "",
    )


def validate_form(form: SubscriptionForm) -> float:
    """入力チェック。OKなら金額(float)を返す"""
    if not form.service_name.strip() or not form.amount.strip():
        raise ValidationError(REQUIRED_FIELDS_MISSING, "サービス名と金額は必須です")

    try:
        amount = float(form.amount.strip().replace(",", ""))
    except ValueError:
        raise ValidationError(INVALID_AMOUNT, "正しい金額を入力してください") from None
    if not math.isfinite(amount) or amount <= 0:
        raise ValidationError(INVALID_AMOUNT, "正しい金額を入力してください")
    if not 1 <= int(form.payment_day) <= 31:
        raise ValidationError(INVALID_PAYMENT_DAY, "支払日は1〜31で入力してください")
    return amount


def _to_jpy(amount: float, currency: Currency, rates: RateSource) -> tuple[float, Currency]:
    if currency != Currency.USD:
        return amount, currency
    try:
        rate = rates.get_rate()
    except Exception as e:
        logger.warning("exchange rate unavailable: %s", e)
        raise RateUnavailable() from e
    return convert(amount, rate), Currency.JPY


def save_subscription(db: Session, form: SubscriptionForm, rates: RateSource) -> int:
    """
    入力を検証 → (USDなら円換算) → insert / update。
    保存した id を返す。
    """
    amount = validate_form(form)

    # 文字数などのチェックはレート取得より前に済ませる
    try:
        data = SubscriptionCreate(
            service_name=form.service_name,
            amount=amount,
            currency=form.currency,
            payment_cycle=form.payment_cycle,
            payment_day=form.payment_day,
            expiration_date=form.expiration_date,
            memo=form.memo,
        )
    except PydanticValidationError as e:
        raise ValidationError(INVALID_INPUT, "入力内容を確認してください") from e

    amount, currency = _to_jpy(amount, form.currency, rates)
    if not math.isfinite(amount) or amount <= 0:
        # 円換算でオーバーフローした場合など
        raise ValidationError(INVALID_AMOUNT, "正しい金額を入力してください")
    data = data.model_copy(update={"amount": amount, "currency": currency})

    try:
        if form.is_edit_mode:
            crud.update_subscription(db, form.id, data)
            return form.id
        return crud.insert_subscription(db, data)
    except (SQLAlchemyError, SubscriptionNotFound) as e:
        logger.warning("save failed for %r: %s", form.service_name, e)
        raise SaveFailed() from e
