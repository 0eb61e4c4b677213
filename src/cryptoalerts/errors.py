from __future__ import annotations

from dataclasses import dataclass


class ExitCodes:
    OK = 0
    UNKNOWN_ERROR = 1
    USAGE_ERROR = 2
    BAD_CONFIG = 10
    NOT_FOUND = 11
    FEED_ERROR = 12
    STORE_ERROR = 13
    NOTIFY_ERROR = 14


@dataclass(frozen=True)
class CryptoAlertsError(Exception):
    message: str
    code: int = ExitCodes.UNKNOWN_ERROR

    def __str__(self) -> str:  # pragma: no cover
        return self.message


class BadConfigError(CryptoAlertsError):
    def __init__(self, message: str = "Bad configuration"):
        super().__init__(message=message, code=ExitCodes.BAD_CONFIG)


class FeedUnavailableError(CryptoAlertsError):
    def __init__(self, message: str = "Price feed unavailable"):
        super().__init__(message=message, code=ExitCodes.FEED_ERROR)


class StoreError(CryptoAlertsError):
    def __init__(self, message: str = "Alert store error"):
        super().__init__(message=message, code=ExitCodes.STORE_ERROR)


class AlertNotFoundError(CryptoAlertsError):
    def __init__(self, message: str = "Alert not found"):
        super().__init__(message=message, code=ExitCodes.NOT_FOUND)


class NotificationError(CryptoAlertsError):
    def __init__(self, message: str = "Notification delivery failed"):
        super().__init__(message=message, code=ExitCodes.NOTIFY_ERROR)


class InvalidAlertError(CryptoAlertsError):
    def __init__(self, problems: list[str]):
        object.__setattr__(self, "problems", list(problems))
        super().__init__(message="Invalid alert: " + "; ".join(problems), code=ExitCodes.USAGE_ERROR)


class NotificationNotFoundError(CryptoAlertsError):
    def __init__(self, message: str = "Notification not found"):
        super().__init__(message=message, code=ExitCodes.NOT_FOUND)
