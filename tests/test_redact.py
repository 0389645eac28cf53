from __future__ import annotations

from gsirelay._redact import redact_for_log


def test_redact_for_log_redacts_sensitive_keys() -> None:
    payload = {
        "auth": {"token": "s3cret"},
        "provider": {"name": "Dota 2", "appid": 570},
        "nested": {"password": "pw"},
    }

    redacted = redact_for_log(payload)
    assert redacted["auth"]["token"] == "<redacted>"
    assert redacted["nested"]["password"] == "<redacted>"
    assert redacted["provider"] == {"name": "Dota 2", "appid": 570}


def test_redact_for_log_truncates_long_strings() -> None:
    long_value = "x" * 600
    redacted = redact_for_log({"value": long_value}, max_string=10)
    assert redacted["value"].startswith("x" * 10)
    assert "<truncated>" in redacted["value"]


def test_redact_for_log_caps_collection_size() -> None:
    redacted = redact_for_log({"items": list(range(10))}, max_items=3)
    assert redacted["items"][:3] == [0, 1, 2]
    assert redacted["items"][3] == "<7 more items>"
