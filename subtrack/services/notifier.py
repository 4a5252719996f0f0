from __future__ import annotations

import enum
import threading
import zlib
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Callable, Protocol

import requests
from sqlalchemy.orm import Session

from subtrack import config
from subtrack.crud import list_expiring_between
from subtrack.db import SessionLocal
from subtrack.utils.logger import get_logger

logger = get_logger(__name__)

CHANNEL_ID = "subscription_notification_channel"
NOTIFICATION_TITLE = "サブスク期限通知"


class Importance(enum.IntEnum):
    LOW = 2
    DEFAULT = 3
    HIGH = 4


@dataclass(frozen=True)
class NotificationChannel:
    id: str
    name: str
    description: str
    importance: Importance


EXPIRATION_CHANNEL = NotificationChannel(
    id=CHANNEL_ID,
    name="サブスク通知",
    description="サブスクリプションの期限通知",
    importance=Importance.HIGH,
)


@dataclass(frozen=True)
class Notification:
    key: int
    title: str
    body: str
    channel_id: str = CHANNEL_ID
    expiration_date: date | None = None


class WorkResult(str, enum.Enum):
    SUCCESS = "success"
    FAILURE = "failure"


def notification_key(service_name: str) -> int:
    """
    サービス名から決まる通知キー（符号付き32bit）。
    同じ名前なら同じキーになるので、再通知は上書きになる。
    """
    k = zlib.crc32(service_name.encode("utf-8"))
    return k - (1 << 32) if k >= (1 << 31) else k


class NotificationCenter(Protocol):
    def create_channel(self, channel: NotificationChannel) -> None: ...

    def notify(self, notification: Notification) -> None: ...


class LocalNotificationCenter:
    """プロセス内の通知置き場。同じ key の通知は置き換える。"""

    def __init__(self) -> None:
        self._channels: dict[str, NotificationChannel] = {}
        self._active: dict[int, Notification] = {}
        self._lock = threading.Lock()

    def create_channel(self, channel: NotificationChannel) -> None:
        with self._lock:
            self._channels[channel.id] = channel

    def channel(self, channel_id: str) -> NotificationChannel | None:
        with self._lock:
            return self._channels.get(channel_id)

    def notify(self, notification: Notification) -> None:
        with self._lock:
            if notification.channel_id not in self._channels:
                raise LookupError(f"notification channel {notification.channel_id!r} is not created")
            self._active[notification.key] = notification
        logger.info("notify key=%s %s", notification.key, notification.body)

    def active(self) -> list[Notification]:
        with self._lock:
            return list(self._active.values())

    def cancel(self, key: int) -> None:
        with self._lock:
            self._active.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._active.clear()


class DiscordWebhookNotificationCenter:
    """Discord の webhook にも流す（ローカルの通知はそのまま残す）"""

    def __init__(self, url: str, local: LocalNotificationCenter | None = None, *, timeout: float = 10) -> None:
        self.url = url
        self.local = local or LocalNotificationCenter()
        self.timeout = timeout

    def create_channel(self, channel: NotificationChannel) -> None:
        self.local.create_channel(channel)

    def notify(self, notification: Notification) -> None:
        self.local.notify(notification)
        message = f"📅 **{notification.title}**\n{notification.body}"
        r = requests.post(self.url, json={"content": message}, timeout=self.timeout)
        logger.info("discord status: %s body: %s", r.status_code, r.text[:200])
        r.raise_for_status()

    def active(self) -> list[Notification]:
        return self.local.active()


def build_notification_center() -> LocalNotificationCenter | DiscordWebhookNotificationCenter:
    if config.DISCORD_WEBHOOK_URL:
        return DiscordWebhookNotificationCenter(config.DISCORD_WEBHOOK_URL)
    return LocalNotificationCenter()


def _expiration_notification(service_name: str, expiration_date: date | None) -> Notification:
    return Notification(
        key=notification_key(service_name),
        title=NOTIFICATION_TITLE,
        body=f"{service_name} の期限が近づいています",
        channel_id=CHANNEL_ID,
        expiration_date=expiration_date,
    )


def check_expiring_subscriptions(
    db: Session,
    center: NotificationCenter,
    *,
    today: date | None = None,
    days: int = config.NOTIFY_DAYS_BEFORE,
) -> list[Notification]:
    """today〜today+days に期限が来るサブスクを1件ずつ通知する"""
    start = today or date.today()
    end = start + timedelta(days=days)

    subs = list_expiring_between(db, start, end)
    if not subs:
        return []

    center.create_channel(EXPIRATION_CHANNEL)
    sent: list[Notification] = []
    for s in subs:
        n = _expiration_notification(s.service_name, s.expiration_date)
        center.notify(n)
        sent.append(n)
    return sent


def run_notification_check(
    center: NotificationCenter,
    session_factory: Callable[[], Session] = SessionLocal,
    *,
    today: date | None = None,
    days: int | None = None,
    enabled: bool | None = None,
) -> WorkResult:
    """
    スケジューラから1日1回くらい呼ばれる。
    成功/失敗だけ返す（リトライはスケジューラ側の都合）。
    """
    if enabled is None:
        enabled = config.NOTIFICATIONS_ENABLED
    if not enabled:
        logger.info("notifications are disabled. skip.")
        return WorkResult.SUCCESS

    window = config.NOTIFY_DAYS_BEFORE if days is None else days
    db = None
    try:
        db = session_factory()
        sent = check_expiring_subscriptions(db, center, today=today, days=window)
        logger.info("expiration check done: %d notification(s), window=%d days", len(sent), window)
        return WorkResult.SUCCESS
    except Exception:
        logger.exception("expiration check failed")
        return WorkResult.FAILURE
    finally:
        if db is not None:
            db.close()
