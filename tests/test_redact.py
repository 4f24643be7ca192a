from __future__ import annotations

from pygps51._redact import redact_for_log, redact_url
from pygps51.credentials import Credentials


def test_redact_for_log_redacts_sensitive_keys() -> None:
    payload = {
        "status": 0,
        "token": "abc123",
        "password": "5ebe2294ecd0e0f08eab7690d2a6ee69",
        "nested": {"AccessToken": "xyz", "deviceid": "D1"},
        "records": [{"cookie": "sid=1", "speed": 40}],
    }

    redacted = redact_for_log(payload)
    assert redacted["status"] == 0
    assert redacted["token"] == "<redacted>"
    assert redacted["password"] == "<redacted>"
    assert redacted["nested"]["AccessToken"] == "<redacted>"
    assert redacted["nested"]["deviceid"] == "D1"
    assert redacted["records"][0] == {"cookie": "<redacted>", "speed": 40}


def test_redact_url_masks_credentials_in_query() -> None:
    url = "https://api.gps51.com/openapi?action=lastposition&token=abc123&serverid=1"

    assert redact_url(url) == "https://api.gps51.com/openapi?action=lastposition&token=<redacted>&serverid=1"


def test_redact_for_log_masks_proxied_target_url() -> None:
    body = {"targetUrl": "https://api.gps51.com/openapi?action=login&token=abc", "method": "POST"}

    assert redact_for_log(body)["targetUrl"].endswith("token=<redacted>")


def test_redact_for_log_truncates_long_strings() -> None:
    long_value = "x" * 600
    redacted = redact_for_log({"value": long_value}, max_string=10)
    assert redacted["value"].startswith("x" * 10)
    assert redacted["value"].endswith("<truncated 590 chars>")


def test_redact_for_log_dumps_models() -> None:
    creds = Credentials(token="tok-secret", serverid="3", username="fleet")

    redacted = redact_for_log(creds)

    assert redacted["token"] == "<redacted>"
    assert redacted["serverid"] == "3"
    assert "tok-secret" not in str(redacted)


def test_redact_for_log_keeps_empty_secrets_visible() -> None:
    redacted = redact_for_log({"token": "", "password": None, "data": b"\x00\x01"})

    assert redacted == {"token": "", "password": None, "data": "<bytes:2b>"}
