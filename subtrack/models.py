import enum
from datetime import date, datetime

from sqlalchemy import Boolean, CheckConstraint, Date, DateTime, Enum, Float, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from .db import Base


class Currency(str, enum.Enum):
    JPY = "JPY"
    USD = "USD"

    @property
    def display_name(self) -> str:
        return {"JPY": "円", "USD": "ドル"}[self.value]

    @property
    def code(self) -> str:
        return self.value


class PaymentCycle(str, enum.Enum):
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"

    @property
    def display_name(self) -> str:
        return {"MONTHLY": "月額", "YEARLY": "年額"}[self.value]


def _now() -> datetime:
    return datetime.now()


class Subscription(Base):
    __tablename__ = "subscriptions"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_subscriptions_amount_positive"),
        CheckConstraint("payment_day BETWEEN 1 AND 31", name="ck_subscriptions_payment_day"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    service_name: Mapped[str] = mapped_column(String(200), nullable=False)
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    # 保存時は USD→JPY 換算済みなので基本 JPY
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default=Currency.JPY.value)
    payment_cycle: Mapped[PaymentCycle] = mapped_column(
        Enum(PaymentCycle, native_enum=False, length=10), nullable=False, index=True
    )
    payment_day: Mapped[int] = mapped_column(Integer, nullable=False)  # 1-31
    expiration_date: Mapped[date | None] = mapped_column(Date, nullable=True, index=True)
    memo: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_now)

    def __repr__(self) -> str:
        return f"<Subscription #{self.id} {self.service_name!r} {self.amount} {self.currency}>"
