from __future__ import annotations


class SubtrackError(Exception):
    """Base class for errors raised by subtrack itself."""


class SubscriptionNotFound(SubtrackError):
    def __init__(self, sub_id: int) -> None:
        super().__init__(f"subscription #{sub_id} not found")
        self.sub_id = sub_id


class ValidationError(SubtrackError):
    """入力エラー。画面にそのまま出せる message を持つ。"""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


class RateUnavailable(SubtrackError):
    code = "rate_unavailable"
    message = "為替レートの取得に失敗しました"

    def __init__(self) -> None:
        super().__init__(self.message)


class SaveFailed(SubtrackError):
    code = "save_failed"
    message = "保存に失敗しました"

    def __init__(self) -> None:
        super().__init__(self.message)
