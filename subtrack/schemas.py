from datetime import date, datetime

from pydantic import BaseModel, Field, field_validator

from .models import Currency, PaymentCycle


class SubscriptionCreate(BaseModel):
    service_name: str = Field(min_length=1, max_length=200)
    amount: float = Field(gt=0, allow_inf_nan=False)
    currency: Currency = Currency.JPY
    payment_cycle: PaymentCycle = PaymentCycle.MONTHLY
    payment_day: int = Field(default=1, ge=1, le=31)
    expiration_date: date | None = None
    memo: str = Field(default="", max_length=500)

    @field_validator("service_name")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("service_name must not be blank")
        return v


class SubscriptionOut(BaseModel):
    id: int
    service_name: str
    amount: float
    currency: str
    payment_cycle: PaymentCycle
    payment_day: int
    expiration_date: date | None = None
    memo: str = ""
    is_active: bool
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class TotalsOut(BaseModel):
    monthly_total: float
    yearly_total: float


class ExchangeRateOut(BaseModel):
    rate: float
    fresh: bool
    fetched_at: datetime | None = None


class NotificationOut(BaseModel):
    key: int
    title: str
    body: str
    channel_id: str
    expiration_date: date | None = None

    class Config:
        from_attributes = True


class NotificationCheckOut(BaseModel):
    result: str
    notifications: list[NotificationOut]
