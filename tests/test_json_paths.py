import unittest

from beacon.services.json_paths import (
    TelemetryPayloadError,
    parse_telemetry_body,
    resolve_device_identifier,
    safely_get_nested_property,
)


class SafelyGetNestedPropertyTests(unittest.TestCase):
    def test_none_input_returns_default(self):
        self.assertEqual(safely_get_nested_property(None, ["network_info", "wifi_ip"], "x"), "x")

    def test_non_json_string_returns_default(self):
        self.assertEqual(safely_get_nested_property("not json", ["a"], "fallback"), "fallback")

    def test_missing_intermediate_returns_default(self):
        self.assertEqual(safely_get_nested_property({"a": {}}, ["a", "b", "c"], 7), 7)

    def test_non_mapping_intermediate_returns_default(self):
        self.assertIsNone(safely_get_nested_property({"a": [1, 2]}, ["a", "b"]))

    def test_json_string_is_parsed_once(self):
        raw = '{"network_info": {"wifi_ip": "10.0.0.5"}}'
        self.assertEqual(safely_get_nested_property(raw, ["network_info", "wifi_ip"]), "10.0.0.5")

    def test_falsy_leaf_values_are_returned(self):
        data = {"security_info": {"is_rooted": False}, "battery_info": {"battery_level": 0}}
        self.assertIs(safely_get_nested_property(data, ["security_info", "is_rooted"], True), False)
        self.assertEqual(safely_get_nested_property(data, ["battery_info", "battery_level"], 50), 0)


class ParseTelemetryBodyTests(unittest.TestCase):
    def test_doubled_braces_are_repaired(self):
        payload = parse_telemetry_body(b'{{"android_id": "abc123"}}')
        self.assertEqual(payload, {"android_id": "abc123"})

    def test_invalid_json_reports_preview_and_tip(self):
        with self.assertRaises(TelemetryPayloadError) as ctx:
            parse_telemetry_body("{android_id: abc}")
        body = ctx.exception.to_response()
        self.assertEqual(body["error"], "Invalid JSON in request body")
        self.assertEqual(body["received_data"], "{android_id: abc}")
        self.assertIn("tip", body)
        self.assertEqual(ctx.exception.status_code, 400)

    def test_non_object_is_rejected(self):
        with self.assertRaises(TelemetryPayloadError) as ctx:
            parse_telemetry_body("[1, 2, 3]")
        self.assertEqual(ctx.exception.error, "Invalid telemetry payload")

    def test_empty_body_is_rejected(self):
        with self.assertRaises(TelemetryPayloadError):
            parse_telemetry_body(b"   ")


class ResolveDeviceIdentifierTests(unittest.TestCase):
    def test_android_id_wins(self):
        payload = {"android_id": "a", "device_id": "b", "device_info": {"android_id": "c"}}
        self.assertEqual(resolve_device_identifier(payload), "a")

    def test_device_id_then_nested(self):
        self.assertEqual(resolve_device_identifier({"device_id": "b", "device_info": {"android_id": "c"}}), "b")
        self.assertEqual(resolve_device_identifier({"device_info": {"android_id": "c"}}), "c")

    def test_missing_identifier_is_client_error(self):
        with self.assertRaises(TelemetryPayloadError) as ctx:
            resolve_device_identifier({"battery_info": {}})
        body = ctx.exception.to_response()
        self.assertEqual(body["error"], "Missing device identifier")
        self.assertEqual(body["received_keys"], ["battery_info"])


if __name__ == "__main__":
    unittest.main()
