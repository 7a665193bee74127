from .dispatcher import DispatchReport, NotificationDispatcher
from .worker import NotificationWorker

__all__ = ["DispatchReport", "NotificationDispatcher", "NotificationWorker"]
