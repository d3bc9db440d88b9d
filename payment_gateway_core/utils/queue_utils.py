"""
Azure Storage Queue utilities.

Direct SDK sends used by the audit stream and the notification dispatcher.
"""

from typing import Any, Dict

from azure.core.exceptions import ResourceNotFoundError
from azure.storage.queue import QueueClient

from .json_utils import dumps
from .logger import get_logger


def send_message_to_queue_direct(
    connection_string: str, queue_name: str, message_data: Dict[str, Any]
) -> None:
    """
    Send a message directly to Azure Storage Queue using the SDK.

    The queue is created on first use if it does not exist yet.

    Args:
        connection_string: Azure Storage connection string
        queue_name: Name of the target queue
        message_data: Message data to send (will be JSON serialized)
    """
    logger = get_logger()

    try:
        json_data = dumps(message_data)
    except (TypeError, ValueError) as e:
        logger.error(f"Failed to serialize message for queue {queue_name}: {str(e)}")
        raise

    queue_client = QueueClient.from_connection_string(
        conn_str=connection_string, queue_name=queue_name
    )

    try:
        logger.debug(f"Sending message to queue: {queue_name}")
        queue_client.send_message(json_data)
    except ResourceNotFoundError:
        logger.debug(f"Queue {queue_name} not found, creating it...")
        queue_client.create_queue()
        queue_client.send_message(json_data)

    logger.debug(f"Successfully sent message to queue: {queue_name}")
