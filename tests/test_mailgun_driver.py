from pathlib import Path

import pytest

from mail_dispatch.config import BackendSpec
from mail_dispatch.errors import ConfigurationError
from mail_dispatch.mailer import mailgun_driver
from mail_dispatch.mailer.mailgun_driver import MailgunDriver
from mail_dispatch.models import Attachment, EmailAddress


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text="", reason="OK") -> None:
        self.status_code = status_code
        self._payload = payload
        self.text = text
        self.reason = reason

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


@pytest.fixture
def posted(monkeypatch):
    for name in ("MAILGUN_API_KEY", "MAILGUN_DOMAIN", "MAILGUN_BASE_URL"):
        monkeypatch.delenv(name, raising=False)
    calls = []
    responses = []

    def fake_post(url, auth, data, files, timeout):
        calls.append({"url": url, "auth": auth, "data": data, "files": files})
        if responses:
            return responses.pop(0)
        return FakeResponse(payload={"id": "<20261019.1@mg.example.com>", "message": "Queued"})

    monkeypatch.setattr(mailgun_driver.requests, "post", fake_post)
    return calls, responses


def make_driver(**options) -> MailgunDriver:
    spec = BackendSpec.parse(
        {"driver": "mailgun", "api_key": "key-123", "domain": "mg.example.com", **options}
    )
    driver = MailgunDriver(spec)
    driver.add_recipient(EmailAddress("jane@example.com", "Jane"))
    driver.set_subject("Hello")
    return driver


def test_requires_api_key_and_domain(posted) -> None:
    with pytest.raises(ConfigurationError):
        MailgunDriver(BackendSpec.parse({"driver": "mailgun", "domain": "mg.example.com"}))


def test_environment_configuration(posted, monkeypatch) -> None:
    monkeypatch.setenv("MAILGUN_API_KEY", "env-key")
    monkeypatch.setenv("MAILGUN_DOMAIN", "mail.example.org")
    driver = MailgunDriver(BackendSpec.parse({"driver": "mailgun"}))
    driver.add_recipient(EmailAddress("jane@example.com"))
    driver.set_message("Hi")
    assert driver.send() is True
    calls, _ = posted
    assert calls[0]["url"] == "https://api.mailgun.net/v3/mail.example.org/messages"
    assert calls[0]["auth"] == ("api", "env-key")
    assert calls[0]["data"]["from"] == "mail@mail.example.org"


def test_html_message_payload(posted, tmp_path: Path) -> None:
    image = tmp_path / "logo.png"
    image.write_bytes(b"\x89PNG")
    driver = make_driver(sender={"email": "news@example.com", "name": "News"})
    driver.add_cc(EmailAddress("boss@example.com"))
    driver.set_reply_to(EmailAddress("support@example.com"))
    driver.set_content_type("text/html")
    driver.set_message('<p>Hi <img src="cid:logo"></p>')
    driver.set_embedded_image("logo", str(image))
    driver.add_attachment(Attachment.from_data(b"%PDF", "report.pdf"))
    driver.configure({"tags": ["weekly"]})
    assert driver.send() is True

    calls, _ = posted
    data = calls[0]["data"]
    assert data["from"] == "News <news@example.com>"
    assert data["to"] == ["Jane <jane@example.com>"]
    assert data["cc"] == ["boss@example.com"]
    assert data["h:Reply-To"] == "support@example.com"
    assert data["html"] == '<p>Hi <img src="cid:logo"></p>'
    assert data["text"] == "Hi "
    assert data["o:tag"] == ["weekly"]
    assert calls[0]["files"] == [
        ("attachment", ("report.pdf", b"%PDF", "application/pdf")),
        ("inline", ("logo", b"\x89PNG", "image/png")),
    ]


def test_plain_message_has_no_files(posted) -> None:
    driver = make_driver(sender={"email": "news@example.com"})
    driver.set_message("Plain body")
    assert driver.send() is True
    calls, _ = posted
    assert calls[0]["files"] is None
    assert calls[0]["data"]["text"] == "Plain body"
    assert "html" not in calls[0]["data"]


def test_api_error_is_recorded(posted) -> None:
    calls, responses = posted
    responses.append(FakeResponse(401, {"message": "Invalid private key"}, reason="Unauthorized"))
    driver = make_driver()
    driver.set_message("Hi")
    assert driver.send() is False
    error = driver.get_error()
    assert error.code == 401
    assert error.message == "Mailgun rejected the message: Invalid private key"


def test_network_error_is_recorded(posted, monkeypatch) -> None:
    def boom(*args, **kwargs):
        raise mailgun_driver.requests.ConnectionError("connection refused")

    monkeypatch.setattr(mailgun_driver.requests, "post", boom)
    driver = make_driver()
    driver.set_message("Hi")
    assert driver.send() is False
    assert "connection refused" in driver.get_error().message
