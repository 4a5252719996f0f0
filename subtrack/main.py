from contextlib import asynccontextmanager
from datetime import date, timedelta
from pathlib import Path

from fastapi import FastAPI, Depends, Request, Form, HTTPException, Query
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates
from sqlalchemy.orm import Session

from . import config, crud
from .db import get_db, init_db
from .errors import RateUnavailable, SaveFailed, ValidationError
from .models import Currency, PaymentCycle
from .schemas import ExchangeRateOut, NotificationCheckOut, NotificationOut, SubscriptionOut, TotalsOut
from .services.editing import SubscriptionForm, load_form, save_subscription
from .services.exchange_rate import ExchangeRateCache
from .services.notifier import build_notification_center, run_notification_check
from .services.scheduler import create_scheduler
from .utils.logger import get_logger

logger = get_logger(__name__)

# create tables at startup (local/dev only)
init_db()


@asynccontextmanager
async def lifespan(app: FastAPI):
    scheduler = None
    if config.ENABLE_SCHEDULER:
        scheduler = create_scheduler(app.state.notifications)
        scheduler.start()
        logger.info("notification scheduler started")
    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.shutdown(wait=False)


app = FastAPI(title="サブスク管理（ローカル）", lifespan=lifespan)
app.state.rates = ExchangeRateCache()
app.state.notifications = build_notification_center()

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))


def get_rates(request: Request) -> ExchangeRateCache:
    return request.app.state.rates


def get_notification_center(request: Request):
    return request.app.state.notifications


def _get_or_404(db: Session, sub_id: int):
    sub = crud.get_subscription(db, sub_id)
    if sub is None:
        raise HTTPException(status_code=404, detail="subscription not found")
    return sub


def _to_int(v: str | None) -> int | None:
    try:
        return int(v) if v not in (None, "") else None
    except Exception:
        return None


def _parse_date(v: str | None) -> date | None:
    s = (v or "").strip()
    if not s:
        return None
    try:
        return date.fromisoformat(s)
    except ValueError:
        raise ValidationError("invalid_date", "有効期限の日付が正しくありません") from None


def _build_form(
    sub_id: int,
    service_name: str,
    amount: str,
    currency: str,
    payment_cycle: str,
    payment_day: str,
    expiration_date: str | None,
    memo: str,
) -> tuple[SubscriptionForm, str | None, ValidationError | None]:
    # 選択肢にない値は保存しない。画面は既定値で描き直してエラーを出す
    invalid = None
    try:
        cur = Currency(currency)
    except ValueError:
        cur = Currency.JPY
        invalid = ValidationError("invalid_input", f"通貨が正しくありません: {currency}")
    try:
        cycle = PaymentCycle(payment_cycle)
    except ValueError:
        cycle = PaymentCycle.MONTHLY
        invalid = invalid or ValidationError("invalid_input", f"支払サイクルが正しくありません: {payment_cycle}")

    form = SubscriptionForm(
        id=sub_id,
        service_name=service_name,
        amount=amount,
        currency=cur,
        payment_cycle=cycle,
        payment_day=_to_int(payment_day) or 0,  # 0 は検証で弾かれる
        memo=memo,
    )
    # 日付だけは入力をそのまま画面に戻したいので別で返す
    raw_date = (expiration_date or "").strip() or None
    return form, raw_date, invalid


def _render_edit(request: Request, form: SubscriptionForm, raw_date: str | None = None,
                 error: str | None = None, status_code: int = 200):
    exp = raw_date if raw_date is not None else (
        form.expiration_date.isoformat() if form.expiration_date else ""
    )
    return templates.TemplateResponse(
        request,
        "edit.html",
        {
            "form": form,
            "expiration_date": exp,
            "error": error,
            "currencies": list(Currency),
            "cycles": list(PaymentCycle),
        },
        status_code=status_code,
    )


def _save_from_form(request: Request, db: Session, rates, form: SubscriptionForm, raw_date: str | None,
                    invalid: ValidationError | None = None):
    try:
        if invalid is not None:
            raise invalid
        form.expiration_date = _parse_date(raw_date)
        save_subscription(db, form, rates)
    except (ValidationError, RateUnavailable, SaveFailed) as e:
        return _render_edit(request, form, raw_date, error=e.message, status_code=400)
    return RedirectResponse(url="/", status_code=303)


# ---- 画面 ----

@app.get("/", response_class=HTMLResponse)
def page_index(request: Request, tab: str = "all", db: Session = Depends(get_db)):
    if tab == "monthly":
        subs = crud.list_active_by_cycle(db, PaymentCycle.MONTHLY)
    elif tab == "yearly":
        subs = crud.list_active_by_cycle(db, PaymentCycle.YEARLY)
    else:
        tab = "all"
        subs = crud.list_active_subscriptions(db)

    return templates.TemplateResponse(
        request,
        "index.html",
        {
            "subs": subs,
            "tab": tab,
            "monthly_total": crud.sum_active_amount_by_cycle(db, PaymentCycle.MONTHLY),
            "yearly_total": crud.sum_active_amount_by_cycle(db, PaymentCycle.YEARLY),
        },
    )


@app.get("/subscriptions/new", response_class=HTMLResponse)
def page_new_subscription(request: Request):
    return _render_edit(request, SubscriptionForm())


@app.get("/subscriptions/{sub_id}", response_class=HTMLResponse)
def page_subscription_detail(request: Request, sub_id: int, db: Session = Depends(get_db)):
    sub = _get_or_404(db, sub_id)
    return templates.TemplateResponse(request, "detail.html", {"sub": sub})


@app.get("/subscriptions/{sub_id}/edit", response_class=HTMLResponse)
def page_edit_subscription(request: Request, sub_id: int, db: Session = Depends(get_db)):
    _get_or_404(db, sub_id)
    return _render_edit(request, load_form(db, sub_id))


@app.get("/settings", response_class=HTMLResponse)
def page_settings(request: Request, rates: ExchangeRateCache = Depends(get_rates)):
    return templates.TemplateResponse(
        request,
        "settings.html",
        {
            "notifications_enabled": config.NOTIFICATIONS_ENABLED,
            "notify_days": config.NOTIFY_DAYS_BEFORE,
            "scheduler_enabled": config.ENABLE_SCHEDULER,
            "cached": rates.snapshot(),
            "fresh": rates.is_fresh(),
        },
    )


# 画面フォーム: 追加
@app.post("/subscriptions")
def create_subscription(
    request: Request,
    service_name: str = Form(""),
    amount: str = Form(""),
    currency: str = Form("JPY"),
    payment_cycle: str = Form("MONTHLY"),
    payment_day: str = Form("1"),
    expiration_date: str | None = Form(None),
    memo: str = Form(""),
    db: Session = Depends(get_db),
    rates: ExchangeRateCache = Depends(get_rates),
):
    form, raw_date, invalid = _build_form(0, service_name, amount, currency, payment_cycle,
                                          payment_day, expiration_date, memo)
    return _save_from_form(request, db, rates, form, raw_date, invalid)


# 画面フォーム: 更新
@app.post("/subscriptions/{sub_id}/update")
def update_subscription(
    request: Request,
    sub_id: int,
    service_name: str = Form(""),
    amount: str = Form(""),
    currency: str = Form("JPY"),
    payment_cycle: str = Form("MONTHLY"),
    payment_day: str = Form("1"),
    expiration_date: str | None = Form(None),
    memo: str = Form(""),
    db: Session = Depends(get_db),
    rates: ExchangeRateCache = Depends(get_rates),
):
    form, raw_date, invalid = _build_form(sub_id, service_name, amount, currency, payment_cycle,
                                          payment_day, expiration_date, memo)
    return _save_from_form(request, db, rates, form, raw_date, invalid)


# 物理削除
@app.post("/subscriptions/{sub_id}/delete")
def delete_subscription(sub_id: int, db: Session = Depends(get_db)):
    crud.delete_subscription(db, sub_id)
    return RedirectResponse(url="/", status_code=303)


# 論理削除（一覧から外すだけ）
@app.post("/subscriptions/{sub_id}/deactivate")
def deactivate_subscription(sub_id: int, db: Session = Depends(get_db)):
    crud.deactivate_subscription(db, sub_id)
    return RedirectResponse(url="/", status_code=303)


@app.post("/subscriptions/{sub_id}/reactivate")
def reactivate_subscription(sub_id: int, db: Session = Depends(get_db)):
    crud.reactivate_subscription(db, sub_id)
    return RedirectResponse(url=f"/subscriptions/{sub_id}", status_code=303)


# ---- API (JSON) ----

@app.get("/api/subscriptions", response_model=list[SubscriptionOut])
def api_list_subscriptions(cycle: PaymentCycle | None = None, db: Session = Depends(get_db)):
    if cycle is not None:
        return crud.list_active_by_cycle(db, cycle)
    return crud.list_active_subscriptions(db)


@app.get("/api/subscriptions/expiring", response_model=list[SubscriptionOut])
def api_expiring_subscriptions(
    days: int = Query(config.NOTIFY_DAYS_BEFORE, ge=0, le=366),
    db: Session = Depends(get_db),
):
    today = date.today()
    return crud.list_expiring_between(db, today, today + timedelta(days=days))


@app.get("/api/subscriptions/{sub_id}", response_model=SubscriptionOut)
def api_get_subscription(sub_id: int, db: Session = Depends(get_db)):
    return _get_or_404(db, sub_id)


@app.get("/api/totals", response_model=TotalsOut)
def api_totals(db: Session = Depends(get_db)):
    return TotalsOut(
        monthly_total=crud.sum_active_amount_by_cycle(db, PaymentCycle.MONTHLY),
        yearly_total=crud.sum_active_amount_by_cycle(db, PaymentCycle.YEARLY),
    )


@app.get("/api/exchange-rate", response_model=ExchangeRateOut)
def api_exchange_rate(rates: ExchangeRateCache = Depends(get_rates)):
    rate = rates.get_rate()
    snap = rates.snapshot()
    return ExchangeRateOut(
        rate=rate,
        fresh=rates.is_fresh(),
        fetched_at=snap.fetched_at if snap else None,
    )


@app.post("/api/notifications/check", response_model=NotificationCheckOut)
def api_run_notification_check(
    db: Session = Depends(get_db),
    center=Depends(get_notification_center),
):
    # 定期実行と同じ入口を通す
    result = run_notification_check(center, lambda: db)
    return NotificationCheckOut(
        result=result.value,
        notifications=[NotificationOut.model_validate(n) for n in center.active()],
    )


@app.get("/api/notifications", response_model=list[NotificationOut])
def api_list_notifications(center=Depends(get_notification_center)):
    return center.active()
