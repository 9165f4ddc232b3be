"""Tests for the webhook notifier."""

import pytest
import requests
from unittest.mock import Mock, patch

from settlement_watch.app.alerts import (
    WebhookNotifier,
    build_payload,
    delivered,
    normalize_mention,
    parse_mentions,
    post_message,
)


def _response(status_code=200, body=None):
    response = Mock()
    response.status_code = status_code
    if body is None:
        response.json.side_effect = ValueError("no json")
    else:
        response.json.return_value = body
    return response


class TestMentions:
    """Test mention target normalization."""

    def test_adds_country_code(self):
        """Test bare numbers get the country code."""
        assert normalize_mention("13800000000") == "+8613800000000"

    def test_keeps_existing_prefix(self):
        """Test numbers with a prefix are left alone."""
        assert normalize_mention("+1234") == "+1234"

    def test_custom_country_code(self):
        """Test a configured country code is used."""
        assert normalize_mention("5551234", "+1") == "+15551234"

    def test_parse_list(self):
        """Test comma-separated lists, blanks and duplicates."""
        assert parse_mentions("13800000000, +1234,,13800000000 ") == ["+8613800000000", "+1234"]

    def test_parse_empty(self):
        """Test empty values give no mentions."""
        assert parse_mentions("") == []
        assert parse_mentions(None) == []


class TestPayload:
    """Test message body construction."""

    def test_payload_with_mentions(self):
        """Test the full robot text body."""
        assert build_payload("hello", ["+8613800000000"]) == {
            "msgtype": "text",
            "text": {"content": "hello"},
            "at": {"atMobiles": ["+8613800000000"], "isAtAll": False},
        }

    def test_payload_without_mentions(self):
        """Test an empty mention list is still present."""
        payload = build_payload("done")
        assert payload["at"] == {"atMobiles": [], "isAtAll": False}


class TestPostMessage:
    """Test single webhook delivery."""

    def test_success(self):
        """Test 200 with errcode 0 is a success."""
        with patch("settlement_watch.app.alerts.requests.post") as mock_post:
            mock_post.return_value = _response(200, {"errcode": 0, "errmsg": "ok"})
            result = post_message("http://robot", {"msgtype": "text"}, timeout=5)

        assert result.ok
        assert result.status == 200
        mock_post.assert_called_once_with("http://robot", json={"msgtype": "text"}, timeout=5)

    def test_non_json_2xx_is_success(self):
        """Test plain 204 responses count as delivered."""
        with patch("settlement_watch.app.alerts.requests.post", return_value=_response(204)):
            assert post_message("http://robot", {}).ok

    def test_http_error(self):
        """Test non-2xx responses are failures, not exceptions."""
        with patch("settlement_watch.app.alerts.requests.post", return_value=_response(500)):
            result = post_message("http://robot", {})

        assert not result.ok
        assert result.status == 500
        assert result.error == "HTTP 500"

    def test_robot_errcode(self):
        """Test a 200 carrying a robot error code is a failure."""
        body = {"errcode": 310000, "errmsg": "keywords not in content"}
        with patch("settlement_watch.app.alerts.requests.post", return_value=_response(200, body)):
            result = post_message("http://robot", {})

        assert not result.ok
        assert "310000" in result.error

    def test_transport_error(self):
        """Test connection errors are captured."""
        with patch("settlement_watch.app.alerts.requests.post",
                   side_effect=requests.ConnectionError("refused")):
            result = post_message("http://robot", {})

        assert not result.ok
        assert result.status is None
        assert "refused" in result.error


class TestWebhookNotifier:
    """Test sending to one or two webhooks."""

    def test_sends_to_both_webhooks(self):
        """Test the same payload goes to primary and secondary."""
        notifier = WebhookNotifier("http://a", "http://b", mentions=["+8613800000000"])
        with patch("settlement_watch.app.alerts.requests.post", return_value=_response(200, {"errcode": 0})) as mock_post:
            results = notifier.send("pending")

        assert [r.url for r in results] == ["http://a", "http://b"]
        assert delivered(results)
        for call in mock_post.call_args_list:
            assert call.kwargs["json"]["at"]["atMobiles"] == ["+8613800000000"]

    def test_mention_false_drops_mentions(self):
        """Test completion notices carry no mentions."""
        notifier = WebhookNotifier("http://a", mentions=["+8613800000000"])
        with patch("settlement_watch.app.alerts.requests.post", return_value=_response(200, {"errcode": 0})) as mock_post:
            notifier.send("done", mention=False)

        assert mock_post.call_args.kwargs["json"]["at"]["atMobiles"] == []

    def test_partial_failure(self):
        """Test one failing webhook does not stop the other."""
        notifier = WebhookNotifier("http://a", "http://b")
        with patch("settlement_watch.app.alerts.requests.post",
                   side_effect=[requests.Timeout("slow"), _response(200, {"errcode": 0})]):
            results = notifier.send("pending")

        assert [r.ok for r in results] == [False, True]
        assert delivered(results)

    def test_no_webhook_configured(self):
        """Test nothing is posted without a URL."""
        notifier = WebhookNotifier(None)
        with patch("settlement_watch.app.alerts.requests.post") as mock_post:
            results = notifier.send("pending")

        assert results == []
        assert not delivered(results)
        mock_post.assert_not_called()

    def test_from_settings(self):
        """Test construction from settings."""
        settings = Mock(
            WEBHOOK_URL="http://a",
            WEBHOOK_URL_SECONDARY=None,
            MENTIONS="13800000000,+1234",
            COUNTRY_CODE="+86",
            HTTP_TIMEOUT=3.0,
        )
        notifier = WebhookNotifier.from_settings(settings)

        assert notifier.urls == ["http://a"]
        assert notifier.mentions == ["+8613800000000", "+1234"]
        assert notifier.timeout == 3.0
