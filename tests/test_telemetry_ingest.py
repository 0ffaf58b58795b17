import asyncio
import unittest
from datetime import timedelta

from beacon.core.ttl_cache import TTLCache
from beacon.models.telemetry import BatteryStatus, NetworkType
from beacon.services import device_monitor
from beacon.services import telemetry_ingest
from beacon.services.json_paths import TelemetryPayloadError
from beacon.services.notification_channels import ChannelResult
from beacon.services.notification_dispatcher import NotificationDispatcher
from beacon.services.notification_gate import NotificationGate
from beacon.services.settings_resolver import SettingsResolver
from beacon.services.telemetry_normalizer import list_device_statuses, load_device_history, normalize

from fake_repository import FakeRepository, utc

T0 = utc(2026, 3, 1, 12, 0)

PAYLOAD = {
    "android_id": "abc123",
    "device_info": {"device_name": "Pixel 8", "manufacturer": "Google", "model": "GKWS6"},
    "system_info": {"android_version": "14", "uptime_millis": 120000},
    "battery_info": {"battery_level": 15, "battery_status": "Discharging"},
    "network_info": {"wifi_ip": "192.168.1.20"},
    "security_info": {"is_rooted": False},
    "app_info": {"installed_apps": ["com.example.mail", "com.example.maps", "com.example.mail"]},
}


class _RecordingChannel:
    name = "telegram"

    def __init__(self):
        self.sent = []

    def configured(self, config):
        return True

    async def send(self, config, notification):
        self.sent.append(notification)
        return ChannelResult(self.name, True)


class IngestTests(unittest.TestCase):
    def test_new_device_in_history_mode(self):
        repo = FakeRepository()

        accepted, device, created = asyncio.run(
            telemetry_ingest.ingest_telemetry(repo, dict(PAYLOAD), storage_mode="history", now=T0)
        )

        self.assertTrue(created)
        self.assertTrue(accepted.success)
        self.assertTrue(accepted.new_device)
        self.assertEqual(accepted.device_id, "abc123")
        self.assertEqual(accepted.timestamp, T0.isoformat())
        self.assertEqual(accepted.received_keys, list(PAYLOAD.keys()))
        self.assertGreater(accepted.received_data_size, 0)
        self.assertEqual(device.device_name, "Pixel 8")
        self.assertEqual(device.last_seen, T0)
        self.assertEqual(repo.history[0].telemetry_data, PAYLOAD)
        self.assertEqual(repo.structured, [])
        self.assertEqual({pkg for _, pkg in repo.apps}, {"com.example.mail", "com.example.maps"})
        self.assertEqual(repo.commits, 1)

    def test_repeat_submission_updates_device(self):
        repo = FakeRepository()
        asyncio.run(telemetry_ingest.ingest_telemetry(repo, dict(PAYLOAD), storage_mode="history", now=T0))
        later = T0 + timedelta(minutes=5)

        accepted, device, created = asyncio.run(telemetry_ingest.ingest_telemetry(
            repo, {"device_id": "abc123", "battery_info": {"battery_level": 14}}, storage_mode="history", now=later,
        ))

        self.assertFalse(created)
        self.assertFalse(accepted.new_device)
        self.assertEqual(device.last_seen, later)
        self.assertEqual(device.device_name, "Unknown Device")
        self.assertEqual(device.manufacturer, "Unknown")
        self.assertEqual(device.model, "Unknown Model")
        self.assertEqual(len(repo.devices), 1)

    def test_structured_mode_writes_columns(self):
        repo = FakeRepository()

        asyncio.run(telemetry_ingest.ingest_telemetry(repo, dict(PAYLOAD), storage_mode="structured", now=T0))

        self.assertEqual(repo.history, [])
        row = repo.structured[0]
        self.assertEqual(row.battery_level, 15)
        self.assertIs(row.battery_status, BatteryStatus.DISCHARGING)
        self.assertIs(row.network_interface, NetworkType.UNKNOWN)
        self.assertEqual(row.android_version, "14")

    def test_app_upsert_failure_is_swallowed(self):
        repo = FakeRepository()
        repo.fail_on.add("upsert_apps")

        accepted, _, _ = asyncio.run(telemetry_ingest.ingest_telemetry(repo, dict(PAYLOAD), storage_mode="history", now=T0))

        self.assertTrue(accepted.success)
        self.assertEqual(len(repo.history), 1)
        self.assertEqual(repo.commits, 1)

    def test_telemetry_write_failure_propagates(self):
        repo = FakeRepository()
        repo.fail_on.add("add_history")

        with self.assertRaises(Exception) as ctx:
            asyncio.run(telemetry_ingest.ingest_telemetry(repo, dict(PAYLOAD), storage_mode="history", now=T0))

        self.assertIn("add_history", str(ctx.exception))
        self.assertEqual(repo.commits, 0)

    def test_missing_identifier_writes_nothing(self):
        repo = FakeRepository()

        with self.assertRaises(TelemetryPayloadError):
            asyncio.run(telemetry_ingest.ingest_telemetry(repo, {"battery_info": {}}, now=T0))

        self.assertEqual(repo.devices, {})


class _FakeSession:
    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class NewDeviceNotificationTests(unittest.TestCase):
    def test_new_device_message(self):
        calls = []

        class _Dispatcher:
            async def dispatch(self, repo, device_id, device_name, message, notification_type):
                calls.append((device_id, message, notification_type))
                return True

        delivered = asyncio.run(telemetry_ingest.notify_new_device(
            "abc123", "Pixel 8", session_factory=_FakeSession, dispatcher=_Dispatcher(),
        ))

        self.assertTrue(delivered)
        self.assertEqual(calls, [("abc123", "New device detected: Pixel 8 (ID: abc123)", "new_device")])


class IngestThenMonitorScenarioTests(unittest.TestCase):
    def test_low_battery_submission_yields_exactly_one_alert(self):
        repo = FakeRepository()
        resolver = SettingsResolver(cache=TTLCache(300))
        channel = _RecordingChannel()
        dispatcher = NotificationDispatcher(
            resolver=resolver,
            gate=NotificationGate(
                cooldown=timedelta(minutes=30),
                staleness=timedelta(hours=24),
                clock=lambda: T0 + timedelta(minutes=1),
            ),
            channels=[channel],
        )

        asyncio.run(telemetry_ingest.ingest_telemetry(repo, dict(PAYLOAD), storage_mode="history", now=T0))
        self.assertIn("abc123", repo.devices)
        self.assertEqual(asyncio.run(resolver.get_battery_threshold(repo)), 20)

        first = asyncio.run(device_monitor.check_low_battery(repo, dispatcher=dispatcher, resolver=resolver))
        second = asyncio.run(device_monitor.check_low_battery(repo, dispatcher=dispatcher, resolver=resolver))

        self.assertEqual((first, second), (1, 0))
        self.assertEqual(len(channel.sent), 1)
        self.assertEqual(channel.sent[0].device_id, "abc123")
        self.assertEqual(channel.sent[0].notification_type, "low_battery")


class ReadPathTests(unittest.TestCase):
    def test_dashboard_and_history_after_ingest(self):
        repo = FakeRepository()
        asyncio.run(telemetry_ingest.ingest_telemetry(repo, dict(PAYLOAD), storage_mode="history", now=T0))
        asyncio.run(telemetry_ingest.ingest_telemetry(
            repo, dict(PAYLOAD, battery_info={"battery_level": 14, "battery_status": "Discharging"}),
            storage_mode="structured", now=T0 + timedelta(minutes=1),
        ))
        resolver = SettingsResolver(cache=TTLCache(300))

        statuses = asyncio.run(list_device_statuses(repo, resolver=resolver, now=T0 + timedelta(minutes=2)))
        history = asyncio.run(load_device_history(repo, repo.devices["abc123"].id, 10))

        self.assertEqual(len(statuses), 1)
        self.assertEqual(statuses[0].battery_level, 14)
        self.assertTrue(statuses[0].is_online)
        self.assertEqual([item["source"] for item in history], ["structured", "history"])

    def test_dashboard_degrades_to_empty_list(self):
        repo = FakeRepository()
        repo.fail_on.add("list_devices")

        statuses = asyncio.run(list_device_statuses(repo, resolver=SettingsResolver(cache=TTLCache(300))))

        self.assertEqual(statuses, [])

    def test_failing_lookup_is_treated_as_absent(self):
        repo = FakeRepository()
        device = repo.add_device("abc123", last_seen=T0)
        repo.add_history_row(device, T0, {"battery_info": {"battery_level": 50}})
        repo.fail_on.add("latest_structured")

        snapshot = asyncio.run(normalize(repo, device.id))

        self.assertEqual(snapshot, {"battery_info": {"battery_level": 50}})
        self.assertEqual(repo.rollbacks, 1)


if __name__ == "__main__":
    unittest.main()
