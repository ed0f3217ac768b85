# ==============================================================================
# Tests for Payload Sanitization
# ==============================================================================
"""
Unit tests for sanitize_value() and sanitize_payload().
"""

import json

from pulse.core.sanitizer import TRUNCATION_MARKER, PayloadLimits, sanitize_payload, sanitize_value

LIMITS = PayloadLimits()


class TestSanitizeValue:
    def test_scalars_pass_through(self):
        for value in (None, True, 3, 2.5, "short"):
            assert sanitize_value(value, LIMITS) == value

    def test_long_string_is_truncated_with_marker(self):
        value = sanitize_value("x" * 1500, LIMITS)
        assert value == "x" * 1000 + TRUNCATION_MARKER

    def test_nested_mapping_is_flattened_to_json(self):
        value = sanitize_value({"a": [1, 2]}, LIMITS)
        assert json.loads(value) == {"a": [1, 2]}

    def test_nested_value_is_capped(self):
        value = sanitize_value(list(range(1000)), LIMITS)
        assert len(value) == 500 + len(TRUNCATION_MARKER)
        assert value.endswith(TRUNCATION_MARKER)

    def test_non_string_mapping_keys_are_stringified(self):
        assert json.loads(sanitize_value({1: "a", "b": 2}, LIMITS)) == {"1": "a", "b": 2}

    def test_sets_are_sorted(self):
        assert sanitize_value({"b", "a"}, LIMITS) == '["a", "b"]'


class TestSanitizePayload:
    def test_long_keys_are_dropped(self):
        payload = {"k" * 101: "dropped", "kept": 1}
        assert sanitize_payload(payload, LIMITS) == {"kept": 1}

    def test_keeps_first_keys_up_to_budget(self):
        payload = {f"key{i}": i for i in range(60)}
        sanitized = sanitize_payload(payload, LIMITS)
        assert len(sanitized) == 50
        assert list(sanitized) == [f"key{i}" for i in range(50)]

    def test_custom_limits(self):
        limits = PayloadLimits(max_key_length=3, max_string_length=2, max_nested_length=5, max_payload_keys=2)
        assert sanitize_payload({"abcd": 1, "ab": "xyz", "c": 1, "d": 2}, limits) == {
            "ab": "xy" + TRUNCATION_MARKER,
            "c": 1,
        }

    def test_does_not_mutate_input(self):
        payload = {"note": "y" * 2000}
        sanitize_payload(payload, LIMITS)
        assert len(payload["note"]) == 2000
