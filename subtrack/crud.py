from datetime import date, datetime
from typing import Iterator

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import SubscriptionNotFound
from .models import PaymentCycle, Subscription
from .schemas import SubscriptionCreate
from .utils.logger import get_logger

logger = get_logger(__name__)


def _active_query(db: Session):
    return db.query(Subscription).filter(Subscription.is_active.is_(True))


def list_active_subscriptions(db: Session) -> list[Subscription]:
    return (
        _active_query(db)
        .order_by(Subscription.service_name.asc(), Subscription.id.asc())
        .all()
    )


def iter_active_subscriptions(db: Session, batch_size: int = 100) -> Iterator[Subscription]:
    """list_active_subscriptions と同じ並びで少しずつ読む"""
    q = (
        _active_query(db)
        .order_by(Subscription.service_name.asc(), Subscription.id.asc())
        .yield_per(batch_size)
    )
    yield from q


def get_subscription(db: Session, sub_id: int) -> Subscription | None:
    # 論理削除済みでも詳細画面からは見えるように is_active は見ない
    return db.get(Subscription, sub_id)


def list_active_by_cycle(db: Session, cycle: PaymentCycle) -> list[Subscription]:
    return (
        _active_query(db)
        .filter(Subscription.payment_cycle == cycle)
        .order_by(Subscription.service_name.asc(), Subscription.id.asc())
        .all()
    )


def list_expiring_between(db: Session, start: date, end: date) -> list[Subscription]:
    """expiration_date が [start, end]（両端含む）の有効なサブスク"""
    return (
        _active_query(db)
        .filter(Subscription.expiration_date.is_not(None))
        .filter(Subscription.expiration_date >= start, Subscription.expiration_date <= end)
        .order_by(Subscription.expiration_date.asc(), Subscription.service_name.asc())
        .all()
    )


def sum_active_amount_by_cycle(db: Session, cycle: PaymentCycle) -> float:
    total = (
        db.query(func.coalesce(func.sum(Subscription.amount), 0.0))
        .filter(Subscription.is_active.is_(True))
        .filter(Subscription.payment_cycle == cycle)
        .scalar()
    )
    return float(total or 0.0)


def _apply(sub: Subscription, data: SubscriptionCreate) -> None:
    sub.service_name = data.service_name
    sub.amount = float(data.amount)
    sub.currency = data.currency.value
    sub.payment_cycle = data.payment_cycle
    sub.payment_day = int(data.payment_day)
    sub.expiration_date = data.expiration_date
    sub.memo = data.memo or ""


def insert_subscription(db: Session, data: SubscriptionCreate) -> int:
    now = datetime.now()
    sub = Subscription(is_active=True, created_at=now, updated_at=now)
    _apply(sub, data)
    try:
        db.add(sub)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to insert subscription %r", data.service_name)
        raise
    db.refresh(sub)
    logger.info(f"Added subscription '{sub.service_name}' #{sub.id}")
    return int(sub.id)


def update_subscription(db: Session, sub_id: int, data: SubscriptionCreate) -> Subscription:
    sub = db.get(Subscription, sub_id)
    if sub is None:
        raise SubscriptionNotFound(sub_id)

    _apply(sub, data)
    sub.updated_at = datetime.now()
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to update subscription #%s", sub_id)
        raise
    db.refresh(sub)
    return sub


def delete_subscription(db: Session, sub_id: int) -> None:
    sub = db.get(Subscription, sub_id)
    if sub is None:
        return
    try:
        db.delete(sub)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    logger.info(f"Deleted subscription #{sub_id}")


def _set_active(db: Session, sub_id: int, active: bool) -> None:
    sub = db.get(Subscription, sub_id)
    if sub is None:
        return
    sub.is_active = active
    sub.updated_at = datetime.now()
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise


def deactivate_subscription(db: Session, sub_id: int) -> None:
    _set_active(db, sub_id, False)


def reactivate_subscription(db: Session, sub_id: int) -> None:
    _set_active(db, sub_id, True)
