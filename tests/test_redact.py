from __future__ import annotations

from binfleet._redact import redact_for_log, redact_url


def test_redact_for_log_redacts_sensitive_keys() -> None:
    headers = {
        "apikey": "anon-key",
        "Authorization": "Bearer anon-key",
        "accept-profile": "public",
        "nested": {"access_token": "jwt", "bin_id": 1001},
        "rows": [{"password": "pw"}],
    }

    redacted = redact_for_log(headers)
    assert redacted["apikey"] == "<redacted>"
    assert redacted["Authorization"] == "<redacted>"
    assert redacted["accept-profile"] == "public"
    assert redacted["nested"]["access_token"] == "<redacted>"
    assert redacted["nested"]["bin_id"] == 1001
    assert redacted["rows"][0]["password"] == "<redacted>"


def test_redact_for_log_truncates_long_strings() -> None:
    long_value = "x" * 600
    redacted = redact_for_log({"value": long_value}, max_string=10)
    assert redacted["value"].startswith("x" * 10)
    assert "<truncated>" in redacted["value"]


def test_redact_for_log_summarizes_bytes() -> None:
    assert redact_for_log(b"\x00\x01\x02") == "<bytes:3b>"


def test_redact_url_masks_query_credentials() -> None:
    url = "wss://demo.supabase.co/realtime/v1/websocket?apikey=anon-key&vsn=1.0.0"

    assert redact_url(url) == "wss://demo.supabase.co/realtime/v1/websocket?apikey=<redacted>&vsn=1.0.0"
