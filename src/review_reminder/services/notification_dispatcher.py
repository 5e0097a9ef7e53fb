"""
Notification Dispatcher - fans finished reports out to delivery channels.

The dispatcher holds no channel-specific logic. Each subscribed channel
decides on its own whether a user gets a delivery, and a failing channel
never prevents the others from delivering.
"""

import logging
from typing import Dict, List

from review_reminder.core.metrics import track_delivery
from review_reminder.schemas.report import Report
from review_reminder.schemas.user import UserRecord
from review_reminder.services.interfaces import DeliveryChannel

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """Registry of delivery channels for one installation."""

    def __init__(self):
        self._channels: Dict[str, DeliveryChannel] = {}

    @property
    def channels(self) -> List[DeliveryChannel]:
        return list(self._channels.values())

    def subscribe(self, channel: DeliveryChannel) -> None:
        """Register a channel; a channel with the same name is replaced."""
        if not isinstance(channel, DeliveryChannel):
            raise TypeError(f"{channel!r} does not implement deliver(user, report)")
        self._channels[channel.name] = channel
        logger.debug(f'Subscribed delivery channel "{channel.name}"')

    def unsubscribe(self, name: str) -> None:
        self._channels.pop(name, None)

    async def dispatch(self, user: UserRecord, report: Report) -> Dict[str, bool]:
        """
        Hand a report to every channel.

        Failed and empty reports are never dispatched. Channels run one after
        another; an exception in one is logged and counted as a failure.

        Returns:
            Delivery outcome per channel name (empty if nothing was dispatched)
        """
        if not report.is_deliverable():
            logger.debug(f'Not dispatching report for "{user.login}" (failed={report.failed}, empty={report.is_empty()})')
            return {}

        results: Dict[str, bool] = {}
        for name, channel in list(self._channels.items()):
            try:
                delivered = bool(await channel.deliver(user, report))
            except Exception as e:
                logger.error(f'Channel "{name}" failed to deliver to "{user.login}": {e}', exc_info=True)
                delivered = False

            results[name] = delivered
            track_delivery(name, delivered)

        logger.info(f'Dispatched report for "{user.login}": {results}')
        return results
