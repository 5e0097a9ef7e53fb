"""
Unit tests for the mail and Slack delivery channels.
"""

import json
from unittest.mock import patch

import httpx
import pytest

from review_reminder.core.config import EmailSettings, SlackSettings
from review_reminder.schemas.report import Report, SearchItem, SectionKey
from review_reminder.schemas.report_config import EmailPreferences
from review_reminder.schemas.user import SlackBinding, UserRecord
from review_reminder.services.channels import MailChannel, SlackChannel


def make_user(**overrides) -> UserRecord:
    data = {"login": "alice", "id": 1, "name": "Alice", "email": "alice@example.com", "timezone": 0}
    data.update(overrides)
    return UserRecord(**data)


@pytest.fixture
def report(item):
    return (
        Report(user=make_user())
        .add(SectionKey.TO_REVIEW, [SearchItem.from_api(item(1, title="Add <b>retry</b>"))])
        .add(SectionKey.TO_COMPLETE, [SearchItem.from_api(item(2))])
    )


class TestMailChannel:
    def test_message_shape(self, report):
        channel = MailChannel(EmailSettings(smtp_from="bot@example.com"))

        msg = channel.build_message(make_user(), report)

        assert msg["Subject"] == "Attention: 2 Pending Reviews"
        assert msg["From"] == "bot@example.com"
        assert "alice@example.com" in msg["To"]
        plain, html = msg.get_payload()
        assert plain.get_content_subtype() == "plain"
        assert html.get_content_subtype() == "html"
        assert "&lt;b&gt;retry&lt;/b&gt;" in html.get_payload(decode=True).decode()

    def test_installation_preferences_win(self, report):
        preferences = EmailPreferences(sender="team@acme.dev", subject="{count} reviews waiting")
        channel = MailChannel(EmailSettings(), preferences=lambda: preferences)

        msg = channel.build_message(make_user(), report)

        assert msg["From"] == "team@acme.dev"
        assert msg["Subject"] == "2 reviews waiting"

    @pytest.mark.asyncio
    async def test_delivers_via_smtp(self, report):
        channel = MailChannel(EmailSettings(enabled=True))

        with patch.object(channel, "_send") as send:
            assert await channel.deliver(make_user(), report) is True

        send.assert_called_once()

    @pytest.mark.asyncio
    async def test_skips_users_without_email(self, report):
        channel = MailChannel(EmailSettings(enabled=True))

        with patch.object(channel, "_send") as send:
            assert await channel.deliver(make_user(email=None), report) is False

        send.assert_not_called()

    @pytest.mark.asyncio
    async def test_dry_run_and_disabled_send_nothing(self, report):
        for channel in (
            MailChannel(EmailSettings(enabled=True), dry_run=True),
            MailChannel(EmailSettings(enabled=False)),
        ):
            with patch.object(channel, "_send") as send:
                assert await channel.deliver(make_user(), report) is False
            send.assert_not_called()

    @pytest.mark.asyncio
    async def test_smtp_failure_is_reported(self, report):
        channel = MailChannel(EmailSettings(enabled=True))

        with patch.object(channel, "_send", side_effect=ConnectionRefusedError("refused")):
            assert await channel.deliver(make_user(), report) is False


class TestSlackChannel:
    def make_channel(self, handler, **settings):
        client = httpx.AsyncClient(
            base_url="https://slack.test/api",
            transport=httpx.MockTransport(handler),
        )
        options = {"enabled": True, "token": "xoxb-test"}
        options.update(settings)
        return SlackChannel(SlackSettings(**options), client=client)

    @pytest.mark.asyncio
    async def test_posts_to_bound_channel(self, report):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={"ok": True})

        channel = self.make_channel(handler)
        user = make_user(slack=SlackBinding(user="U1", channel="D1", active=True))

        assert await channel.deliver(user, report) is True

        assert requests[0].url.path == "/api/chat.postMessage"
        body = json.loads(requests[0].content)
        assert body["channel"] == "D1"
        assert "2 pending review(s)" in body["text"]
        await channel.close()

    @pytest.mark.asyncio
    async def test_inactive_binding_is_skipped(self, report):
        def handler(request):
            raise AssertionError("no request expected")

        channel = self.make_channel(handler)

        assert await channel.deliver(make_user(slack=SlackBinding(user="U1")), report) is False
        assert await channel.deliver(make_user(), report) is False

    @pytest.mark.asyncio
    async def test_api_error_is_reported(self, report):
        channel = self.make_channel(lambda request: httpx.Response(200, json={"ok": False, "error": "channel_not_found"}))
        user = make_user(slack=SlackBinding(user="U1", active=True))

        assert await channel.deliver(user, report) is False

    @pytest.mark.asyncio
    async def test_http_error_is_reported(self, report):
        channel = self.make_channel(lambda request: httpx.Response(500))
        user = make_user(slack=SlackBinding(user="U1", active=True))

        assert await channel.deliver(user, report) is False
