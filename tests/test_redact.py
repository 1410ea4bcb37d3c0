from __future__ import annotations

from pyissuemap._redact import redact_for_log, redact_query


def test_redact_for_log_redacts_sensitive_keys() -> None:
    payload = {
        "apikey": "anon-key",
        "Authorization": "Bearer abc",
        "nested": {"access_token": "tok", "title": "Pothole"},
        "rows": [{"password": "pw"}],
    }

    redacted = redact_for_log(payload)
    assert redacted["apikey"] == "<redacted>"
    assert redacted["Authorization"] == "<redacted>"
    assert redacted["nested"]["access_token"] == "<redacted>"
    assert redacted["nested"]["title"] == "Pothole"
    assert redacted["rows"][0]["password"] == "<redacted>"


def test_redact_for_log_truncates_long_strings() -> None:
    long_value = "x" * 600
    redacted = redact_for_log({"value": long_value}, max_string=10)
    assert redacted["value"].startswith("x" * 10)
    assert "<truncated>" in redacted["value"]


def test_redact_query_hides_geocoder_token() -> None:
    params = {"types": "country", "limit": "1", "access_token": "pk.secret"}

    assert redact_query(params) == {"types": "country", "limit": "1", "access_token": "<redacted>"}
    assert redact_query(None) == {}
