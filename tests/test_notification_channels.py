import asyncio
import unittest

from beacon.schemas.notification import NotificationSettings
from beacon.services.notification_channels import (
    EmailChannel,
    FixedWindowRateLimiter,
    Notification,
    TelegramChannel,
    email_subject,
    format_telegram_message,
)


class _Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class _FakeSession:
    def __init__(self):
        self.closed = False

    async def close(self):
        self.closed = True


class _FakeBot:
    instances = []

    def __init__(self, token, fail=False):
        self.token = token
        self.fail = fail
        self.session = _FakeSession()
        self.messages = []
        _FakeBot.instances.append(self)

    async def send_message(self, chat_id, text, parse_mode=None):
        if self.fail:
            raise RuntimeError("Bad Request: chat not found")
        self.messages.append((chat_id, text, parse_mode))


def _telegram_config():
    return NotificationSettings(telegram_bot_token="123:abc", telegram_chat_id="-100200300")


def _notification(notification_type="low_battery", name="Pixel <8>"):
    return Notification("abc123", name, "Battery level is 10% & falling", notification_type)


class TelegramFormattingTests(unittest.TestCase):
    def test_emoji_per_type_and_html_escaping(self):
        text = format_telegram_message(_notification())
        self.assertEqual(text, "🪫 [Pixel &lt;8&gt; (abc123)]: Battery level is 10% &amp; falling")

    def test_known_and_default_emoji(self):
        expected = {
            "device_offline": "🔌",
            "security_issue": "⚠️",
            "new_device": "🆕",
            "test": "🧪",
            "something_else": "📱",
        }
        for notification_type, emoji in expected.items():
            self.assertTrue(format_telegram_message(_notification(notification_type)).startswith(emoji + " "))


class RateLimiterTests(unittest.TestCase):
    def test_fixed_window_per_key(self):
        clock = _Clock()
        limiter = FixedWindowRateLimiter(2, 60, clock=clock)

        self.assertTrue(limiter.allow("chat"))
        self.assertTrue(limiter.allow("chat"))
        self.assertFalse(limiter.allow("chat"))
        self.assertTrue(limiter.allow("other-chat"))

        clock.now = 61
        self.assertTrue(limiter.allow("chat"))


class TelegramChannelTests(unittest.TestCase):
    def setUp(self):
        _FakeBot.instances = []

    def test_sends_html_and_closes_session(self):
        channel = TelegramChannel(bot_factory=_FakeBot)

        result = asyncio.run(channel.send(_telegram_config(), _notification()))

        self.assertTrue(result.success)
        bot = _FakeBot.instances[0]
        self.assertEqual(bot.token, "123:abc")
        self.assertEqual(bot.messages[0][0], -100200300)
        self.assertEqual(bot.messages[0][2], "HTML")
        self.assertTrue(bot.session.closed)

    def test_transport_error_is_a_failed_result(self):
        channel = TelegramChannel(bot_factory=lambda token: _FakeBot(token, fail=True))

        result = asyncio.run(channel.send(_telegram_config(), _notification()))

        self.assertFalse(result.success)
        self.assertIn("chat not found", result.error)
        self.assertTrue(_FakeBot.instances[0].session.closed)

    def test_rate_limited_chat_is_a_failed_result(self):
        channel = TelegramChannel(bot_factory=_FakeBot, rate_limiter=FixedWindowRateLimiter(1, 60, clock=_Clock()))

        first = asyncio.run(channel.send(_telegram_config(), _notification()))
        second = asyncio.run(channel.send(_telegram_config(), _notification()))

        self.assertTrue(first.success)
        self.assertFalse(second.success)
        self.assertEqual(second.error, "rate_limited")
        self.assertEqual(len(_FakeBot.instances), 1)

    def test_configured_requires_token_and_chat(self):
        channel = TelegramChannel(bot_factory=_FakeBot)
        self.assertTrue(channel.configured(_telegram_config()))
        self.assertFalse(channel.configured(NotificationSettings(telegram_bot_token="123:abc")))
        self.assertFalse(channel.configured(NotificationSettings(telegram_chat_id="42")))


class EmailChannelTests(unittest.TestCase):
    def test_subject_per_type(self):
        self.assertEqual(email_subject("device_offline"), "Device Offline Alert")
        self.assertEqual(email_subject("low_battery"), "Low Battery Alert")
        self.assertEqual(email_subject("security_issue"), "Security Issue Alert")
        self.assertEqual(email_subject("new_device"), "New Device Detected")
        self.assertEqual(email_subject("test"), "Device Alert")

    def test_delivers_through_transport(self):
        sent = []
        channel = EmailChannel(transport=lambda to, subject, body: sent.append((to, subject, body)))
        config = NotificationSettings(email_notifications=" ops@example.com ")

        result = asyncio.run(channel.send(config, _notification("device_offline")))

        self.assertTrue(result.success)
        self.assertEqual(sent[0][0], "ops@example.com")
        self.assertEqual(sent[0][1], "Device Offline Alert")
        self.assertIn("abc123", sent[0][2])

    def test_transport_error_is_a_failed_result(self):
        def _broken(to, subject, body):
            raise OSError("connection refused")

        result = asyncio.run(EmailChannel(transport=_broken).send(
            NotificationSettings(email_notifications="ops@example.com"), _notification(),
        ))

        self.assertFalse(result.success)
        self.assertIn("connection refused", result.error)

    def test_configured_requires_address(self):
        channel = EmailChannel(transport=lambda *a: None)
        self.assertFalse(channel.configured(NotificationSettings()))
        self.assertTrue(channel.configured(NotificationSettings(email_notifications="ops@example.com")))


if __name__ == "__main__":
    unittest.main()
