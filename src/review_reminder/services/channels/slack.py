"""
Slack delivery channel.

Posts a short mrkdwn summary through the Web API's chat.postMessage. Only
users with an active chat binding receive reports here.
"""

import logging
from typing import Optional

import httpx

from review_reminder.core.config import SlackSettings
from review_reminder.schemas.report import Report
from review_reminder.schemas.user import UserRecord
from review_reminder.services.channels.formatting import render_slack

logger = logging.getLogger(__name__)


class SlackChannel:
    """Delivers reports as direct messages (or to the bound channel)."""

    name = "slack"

    def __init__(
        self,
        settings: SlackSettings,
        client: Optional[httpx.AsyncClient] = None,
        dry_run: bool = False,
    ):
        self.settings = settings
        self._client = client
        self.dry_run = dry_run

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.settings.api_url,
                timeout=httpx.Timeout(self.settings.timeout_seconds),
                headers={"Authorization": f"Bearer {self.settings.token}"},
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def deliver(self, user: UserRecord, report: Report) -> bool:
        if not self.settings.enabled or not self.settings.token:
            logger.debug("Slack delivery disabled")
            return False
        if not user.wants_chat:
            return False

        target = user.slack.channel or user.slack.user
        text = f"You have {report.count()} pending review(s)\n{render_slack(report)}"

        if self.dry_run:
            logger.info(f'Dry run: would post report for "{user.login}" to {target}')
            return False

        try:
            response = await self._get_client().post(
                "/chat.postMessage",
                json={"channel": target, "text": text},
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f'Posting report for "{user.login}" to Slack failed: {e}')
            return False

        data = response.json()
        if not data.get("ok"):
            logger.error(f'Slack rejected report for "{user.login}": {data.get("error")}')
            return False

        logger.info(f'Posted report for "{user.login}" to Slack')
        return True
