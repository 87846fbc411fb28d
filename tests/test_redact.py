from __future__ import annotations

from pytrip._redact import redact_for_log


def test_redact_for_log_redacts_sensitive_keys() -> None:
    payload = {
        "userMotorId": "motor-1",
        "authorization": "Bearer abc",
        "token": {"value": "abc"},
        "password": "pw",
        "nested": {"apiKey": "k"},
    }

    redacted = redact_for_log(payload)
    assert redacted["userMotorId"] == "motor-1"
    assert redacted["authorization"] == "<redacted>"
    assert redacted["token"] == "<redacted>"
    assert redacted["password"] == "<redacted>"
    assert redacted["nested"]["apiKey"] == "<redacted>"


def test_redact_for_log_coarsens_coordinates() -> None:
    redacted = redact_for_log({"origin": {"latitude": 14.599512, "longitude": 120.984222}, "lng": 1.23456})
    assert redacted["origin"] == {"latitude": 14.6, "longitude": 120.98}
    assert redacted["lng"] == 1.23


def test_redact_for_log_truncates_long_strings() -> None:
    long_value = "x" * 600
    redacted = redact_for_log({"value": long_value}, max_string=10)
    assert redacted["value"].startswith("x" * 10)
    assert "<truncated>" in redacted["value"]


def test_redact_for_log_caps_long_lists() -> None:
    redacted = redact_for_log({"path": list(range(10))}, max_items=3)
    assert redacted["path"] == [0, 1, 2, "<+7 more>"]
