from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from subtrack.config import DB_URL

engine = create_engine(
    DB_URL,
    connect_args={"check_same_thread": False} if DB_URL.startswith("sqlite") else {}
)

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)

class Base(DeclarativeBase):
    pass

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# 後から足したカラム（追加のみ・ローカルsqlite用）
_ADDED_SUBSCRIPTION_COLUMNS = {
    "memo": "ALTER TABLE subscriptions ADD COLUMN memo VARCHAR(500) NOT NULL DEFAULT ''",
    "is_active": "ALTER TABLE subscriptions ADD COLUMN is_active BOOLEAN NOT NULL DEFAULT 1",
    "currency": "ALTER TABLE subscriptions ADD COLUMN currency VARCHAR(3) NOT NULL DEFAULT 'JPY'",
}


def _ensure_subscription_columns(bind) -> None:
    if not str(bind.url).startswith("sqlite"):
        return
    with bind.begin() as conn:
        cols = [r[1] for r in conn.execute(text("PRAGMA table_info(subscriptions)")).fetchall()]
        for name, ddl in _ADDED_SUBSCRIPTION_COLUMNS.items():
            if name not in cols:
                conn.execute(text(ddl))


def init_db(bind=None) -> None:
    """create tables at startup (local/dev only)"""
    from subtrack import models  # noqa: F401  テーブル定義の登録

    bind = bind or engine
    Base.metadata.create_all(bind=bind)
    _ensure_subscription_columns(bind)
