from backend.src.notifier.dispatcher import AlertDispatcher
from backend.src.notifier.email_notifier import EmailNotifier

__all__ = [
    "AlertDispatcher",
    "EmailNotifier",
]
