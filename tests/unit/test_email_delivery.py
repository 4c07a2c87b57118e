"""Tests for email delivery: SendGrid, Resend and simulated sends."""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx

from openword_admin.notifications.email_delivery import EmailSender


def _mock_http(status_code=202, text="", side_effect=None):
    response = MagicMock()
    response.status_code = status_code
    response.text = text

    client = AsyncMock()
    client.post = AsyncMock(return_value=response, side_effect=side_effect)

    factory = MagicMock()
    factory.return_value.__aenter__ = AsyncMock(return_value=client)
    factory.return_value.__aexit__ = AsyncMock(return_value=False)
    return factory, client


def _sender(provider="sendgrid", **overrides):
    defaults = {
        "provider": provider,
        "api_key": "SG.test-key",
        "from_email": "support@openword.live",
        "from_name": "Open Word Support",
        "support_email": "support@openword.live",
        "alert_email": "alerts@openword.live",
    }
    defaults.update(overrides)
    return EmailSender(**defaults)


class TestSimulated:
    async def test_unconfigured_is_simulated_success(self):
        sender = EmailSender()
        assert sender.configured is False
        result = await sender.send_email("a@example.com", "Hello", "<p>Hi</p>")
        assert result.success is True
        assert result.simulated is True

    async def test_provider_without_key_is_simulated(self):
        factory, client = _mock_http()
        with patch("httpx.AsyncClient", factory):
            result = await _sender(api_key="").send_email("a@example.com", "Hello", "<p>Hi</p>")
        assert result.simulated is True
        client.post.assert_not_called()


class TestSendGrid:
    async def test_success(self):
        factory, client = _mock_http(status_code=202)
        with patch("httpx.AsyncClient", factory):
            result = await _sender().send_email(
                "billing@acme.example", "Pricing update", "<p>Dear Acme</p>", "Acme",
            )
        assert result.success is True
        assert result.simulated is False

        url = client.post.call_args.args[0]
        body = client.post.call_args.kwargs["json"]
        headers = client.post.call_args.kwargs["headers"]
        assert url == "https://api.sendgrid.com/v3/mail/send"
        assert headers["Authorization"] == "Bearer SG.test-key"
        assert body["personalizations"][0]["to"] == [{"email": "billing@acme.example", "name": "Acme"}]
        assert body["from"] == {"email": "support@openword.live", "name": "Open Word Support"}
        assert body["subject"] == "Pricing update"
        document = body["content"][0]["value"]
        assert "<p>Dear Acme</p>" in document
        assert "mailto:support@openword.live" in document

    async def test_http_error_status(self):
        factory, _ = _mock_http(status_code=400, text="invalid email")
        with patch("httpx.AsyncClient", factory):
            result = await _sender().send_email("bad", "Subject", "<p>x</p>")
        assert result.success is False
        assert result.error == "SendGrid HTTP 400: invalid email"

    async def test_transport_error(self):
        factory, _ = _mock_http(side_effect=httpx.ConnectError("connection refused"))
        with patch("httpx.AsyncClient", factory):
            result = await _sender().send_email("a@example.com", "Subject", "<p>x</p>")
        assert result.success is False
        assert "connection refused" in result.error


class TestResend:
    async def test_success(self):
        factory, client = _mock_http(status_code=200)
        with patch("httpx.AsyncClient", factory):
            result = await _sender(provider="resend", api_key="re_test").send_email(
                "billing@acme.example", "Pricing update", "<p>Dear Acme</p>", "Acme",
            )
        assert result.success is True
        url = client.post.call_args.args[0]
        body = client.post.call_args.kwargs["json"]
        assert url == "https://api.resend.com/emails"
        assert body["to"] == ["Acme <billing@acme.example>"]
        assert body["from"] == "Open Word Support <support@openword.live>"

    async def test_error_status(self):
        factory, _ = _mock_http(status_code=422, text="domain not verified")
        with patch("httpx.AsyncClient", factory):
            result = await _sender(provider="resend", api_key="re_test").send_email(
                "a@example.com", "Subject", "<p>x</p>",
            )
        assert result.error == "Resend HTTP 422: domain not verified"


class TestAlerts:
    async def test_priority_prefix(self):
        factory, client = _mock_http(status_code=202)
        with patch("httpx.AsyncClient", factory):
            result = await _sender().send_alert("Price Migration Failed", "<p>boom</p>", "critical")
        assert result.success is True
        body = client.post.call_args.kwargs["json"]
        assert body["subject"] == "CRITICAL: OpenWord Dashboard - Price Migration Failed"
        assert body["personalizations"][0]["to"][0]["email"] == "alerts@openword.live"
        assert "<p>boom</p>" in body["content"][0]["value"]

    async def test_no_alert_address(self):
        result = await _sender(alert_email="").send_alert("Subject", "<p>x</p>")
        assert result.success is False
