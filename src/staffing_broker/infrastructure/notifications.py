"""Default collaborator implementations that write to the structured log.

Real delivery (push, SMS gateway) lives outside this service; these adapters
keep the core runnable and observable without one.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from staffing_broker.logging_config import get_logger

if TYPE_CHECKING:
    from staffing_broker.domain.collaborators import Notification, OtpDelivery

logger = get_logger(__name__)


class LoggingNotifier:
    async def notify(self, notification: Notification) -> None:
        logger.info(
            "notification.sent",
            user_id=notification.user_id,
            event_type=notification.event_type,
            subject=str(notification.subject),
            **notification.payload,
        )


class LoggingOtpSender:
    """Logs OTP deliveries. The code itself is only logged when reveal_codes is set."""

    def __init__(self, reveal_codes: bool = False) -> None:
        self._reveal_codes = reveal_codes

    async def send_otp(self, delivery: OtpDelivery) -> None:
        logger.info(
            "otp.sent",
            phone=_mask_phone(delivery.phone),
            purpose=delivery.purpose,
            subject=str(delivery.subject),
            code=delivery.code if self._reveal_codes else None,
        )


def _mask_phone(phone: str) -> str:
    if len(phone) <= 4:
        return "*" * len(phone)
    return "*" * (len(phone) - 4) + phone[-4:]
