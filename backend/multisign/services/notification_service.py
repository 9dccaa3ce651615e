import logging
from dataclasses import dataclass
from typing import Protocol

logger = logging.getLogger(__name__)


@dataclass
class SigningNotification:
    recipient_id: str
    request_id: str
    title: str
    message: str


def signer_turn_notification(recipient_id: str, request_id: str, file_name: str, order: int) -> SigningNotification:
    return SigningNotification(
        recipient_id=recipient_id,
        request_id=request_id,
        title="Your signature is requested",
        message=f"It is your turn (position {order + 1}) to sign '{file_name}'.",
    )


def request_completed_notification(recipient_id: str, request_id: str, file_name: str) -> SigningNotification:
    return SigningNotification(
        recipient_id=recipient_id,
        request_id=request_id,
        title="All signatures collected",
        message=f"'{file_name}' has been signed by every required signer.",
    )


def request_declined_notification(
    recipient_id: str, request_id: str, file_name: str, decliner_id: str
) -> SigningNotification:
    return SigningNotification(
        recipient_id=recipient_id,
        request_id=request_id,
        title="Signing request declined",
        message=f"{decliner_id} declined to sign '{file_name}'.",
    )


class Notifier(Protocol):
    def send(self, notification: SigningNotification) -> None: ...


class LoggingNotifier:
    """Default delivery channel: writes notifications to the log."""

    def send(self, notification: SigningNotification) -> None:
        logger.info(
            "notify %s [%s]: %s",
            notification.recipient_id,
            notification.request_id,
            notification.message,
        )


def dispatch(notifier: Notifier, notifications: list[SigningNotification]) -> None:
    """Fire-and-forget delivery; a failing channel never affects the caller."""
    for notification in notifications:
        try:
            notifier.send(notification)
        except Exception as exc:
            logger.warning(
                "Notification to %s for request %s failed: %s",
                notification.recipient_id,
                notification.request_id,
                exc,
            )
