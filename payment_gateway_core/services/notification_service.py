"""
Fire-and-forget payment notifications.

SMS and email delivery live outside this package; they consume the
``payment-notifications`` queue.
"""

from azure.core.exceptions import AzureError

from ..config import AppConfig
from ..schemas.payment_schemas import PaymentNotification
from ..utils.logger import get_logger
from ..utils.queue_utils import send_message_to_queue_direct


class NotificationDispatcher:
    def __init__(self, config: AppConfig):
        self.config = config
        self.logger = get_logger()

    @property
    def enabled(self) -> bool:
        return bool(self.config.features.enable_notifications and self.config.queue.connection_string)

    def dispatch(self, notification: PaymentNotification) -> bool:
        """
        Queue a notification. Never raises.

        Returns:
            True if the message was handed to the queue
        """
        if not self.enabled:
            self.logger.debug(
                "Notifications disabled, skipping",
                extra={"payment_id": notification.payment_id},
            )
            return False

        try:
            send_message_to_queue_direct(
                self.config.queue.connection_string,
                self.config.queue.notification_queue_name,
                notification.model_dump(mode="json"),
            )
        except (AzureError, ValueError) as e:
            self.logger.error(
                "Failed to dispatch payment notification",
                extra={"payment_id": notification.payment_id, "error": str(e)},
            )
            return False

        self.logger.info(
            "Payment notification queued",
            extra={"payment_id": notification.payment_id, "tenant_id": notification.tenant_id},
        )
        return True
