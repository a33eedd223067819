import json
import sqlite3
from pathlib import Path

import pytest

from mail_dispatch.config import MappingConfigProvider
from mail_dispatch.errors import CapabilityContractError, ConfigurationError, ErrorRecord
from mail_dispatch.mailer import Mailer, SendLog
from mail_dispatch.mailer.base import DEFAULT_SUBJECT
from mail_dispatch.models import Attachment, EmailAddress

from conftest import CALLS, FakeMailDriver


def make_mailer(*specs) -> Mailer:
    return Mailer(*specs, config_provider=MappingConfigProvider())


def compose(mailer: Mailer) -> None:
    mailer.set_sender(EmailAddress("noreply@example.com", "Example"))
    mailer.add_recipient(EmailAddress("jane@example.com"))
    mailer.set_message("Hello")
    CALLS.clear()


def test_broadcast_reaches_every_driver_in_order() -> None:
    mailer = make_mailer(
        {"driver": "fake", "label": "a"},
        {"driver": "fake", "label": "b"},
        {"driver": "fake", "label": "c"},
    )
    assert mailer.add_recipient(EmailAddress("jane@example.com")) is True
    assert CALLS == [("a", "add_recipient"), ("b", "add_recipient"), ("c", "add_recipient")]
    for driver in mailer.drivers:
        assert driver.recipients == [EmailAddress("jane@example.com")]


def test_broadcast_is_and_of_results_without_short_circuit() -> None:
    mailer = make_mailer(
        {"driver": "fake", "label": "a", "refuse": ["add_cc"]},
        {"driver": "fake", "label": "b"},
    )
    assert mailer.add_cc(EmailAddress("boss@example.com")) is False
    # the second driver was still called after the first refused
    assert CALLS == [("a", "add_cc"), ("b", "add_cc")]
    assert mailer.drivers[1].cc == [EmailAddress("boss@example.com")]
    assert mailer.get_error() == ErrorRecord("a refuses cc")


def test_send_stops_at_first_success() -> None:
    mailer = make_mailer(
        {"driver": "fake", "label": "a"},
        {"driver": "fake", "label": "b"},
    )
    compose(mailer)
    assert mailer.send() is True
    assert CALLS == [("a", "send")]


def test_send_falls_back_and_success_resets_error() -> None:
    mailer = make_mailer(
        {"driver": "fake", "label": "a", "fail_send": True},
        {"driver": "fake", "label": "b"},
    )
    compose(mailer)
    assert mailer.send() is True
    assert CALLS == [("a", "send"), ("b", "send")]
    assert mailer.get_error() is None
    # the failed primary is still visible for diagnostics
    assert mailer.get_errors() == [ErrorRecord("a is down", 503), None]


def test_send_fails_when_every_driver_fails() -> None:
    mailer = make_mailer(
        {"driver": "fake", "label": "a", "fail_send": True},
        {"driver": "fake", "label": "b", "fail_send": True},
    )
    compose(mailer)
    assert mailer.send() is False
    assert CALLS == [("a", "send"), ("b", "send")]
    assert mailer.get_error() == ErrorRecord("a is down", 503)


def test_get_error_scans_drivers_in_order() -> None:
    mailer = make_mailer(
        {"driver": "fake", "label": "a"},
        {"driver": "fake", "label": "b", "refuse": ["add_bcc"]},
    )
    assert mailer.get_error() is None
    mailer.add_bcc(EmailAddress("audit@example.com"))
    assert mailer.get_error() == ErrorRecord("b refuses bcc")


def test_send_without_message_reports_error() -> None:
    mailer = make_mailer({"driver": "fake"})
    mailer.set_sender(EmailAddress("noreply@example.com"))
    mailer.add_recipient(EmailAddress("jane@example.com"))
    assert mailer.send() is False
    assert mailer.get_error().message == (
        "Failed to send email because no message has been set."
    )


def test_subject_is_sanitized_on_every_driver() -> None:
    mailer = make_mailer({"driver": "fake", "label": "a"}, {"driver": "fake", "label": "b"})
    mailer.set_subject("line1\nline2")
    assert [d.subject for d in mailer.drivers] == ["line1line2", "line1line2"]
    mailer.set_subject(None)
    assert [d.subject for d in mailer.drivers] == [DEFAULT_SUBJECT, DEFAULT_SUBJECT]
    mailer.set_subject("  Bcc: evil@example.com\r\n ")
    assert mailer.drivers[0].subject == "Bcc: evil@example.com"


def test_content_type_and_bodies_are_normalized() -> None:
    mailer = make_mailer({"driver": "fake"})
    mailer.set_content_type("Text/HTML")
    mailer.set_message(None)
    mailer.set_alt_message(42)
    driver = mailer.drivers[0]
    assert driver.content_type == "text/html"
    assert driver.message == ""
    assert driver.alt_message == ""


def test_embedded_image_unsupported_is_a_normal_failure(tmp_path: Path) -> None:
    image = tmp_path / "logo.png"
    image.write_bytes(b"\x89PNG")
    mailer = make_mailer({"driver": "fake"})
    assert mailer.set_embedded_image("logo", str(image)) is False
    assert "does not support" in mailer.get_error().message


def test_add_attachment_broadcasts() -> None:
    mailer = make_mailer({"driver": "fake", "label": "a"}, {"driver": "fake", "label": "b"})
    attachment = Attachment.from_string("a,b\n", "/tmp/x/report.csv")
    assert mailer.add_attachment(attachment) is True
    assert all(d.attachments == [attachment] for d in mailer.drivers)


def test_add_mailing_list_routes_categories() -> None:
    mailer = make_mailer({"driver": "fake"})
    result = mailer.add_mailing_list(
        {
            "Recipient": [{"email": "a@example.com", "name": "A"}],
            "CC": [{"email": "b@example.com"}],
            "bcc": ["c@example.com"],
            "owner": [{"email": "ignored@example.com"}],
        }
    )
    driver = mailer.drivers[0]
    assert result is True
    assert driver.recipients == [EmailAddress("a@example.com", "A")]
    assert driver.cc == [EmailAddress("b@example.com")]
    assert driver.bcc == [EmailAddress("c@example.com")]


def test_add_mailing_list_reports_success_even_when_drivers_refuse() -> None:
    mailer = make_mailer({"driver": "fake", "refuse": ["add_recipient"]})
    assert mailer.add_mailing_list({"recipient": [{"email": "a@example.com"}]}) is True
    assert mailer.get_error() is not None


def test_add_mailing_list_from_named_group() -> None:
    provider = MappingConfigProvider(
        {
            "mailer": {"default": {"driver": "fake"}},
            "mailer-lists": {"staff": {"recipient": [{"email": "ops@example.com"}]}},
        }
    )
    mailer = Mailer(config_provider=provider)
    assert mailer.add_mailing_list("staff") is True
    assert mailer.drivers[0].recipients == [EmailAddress("ops@example.com")]
    with pytest.raises(ConfigurationError):
        mailer.add_mailing_list("missing")


def test_request_email_verification_only_uses_first_driver() -> None:
    mailer = make_mailer({"driver": "fake", "label": "a"}, {"driver": "fake", "label": "b"})
    address = EmailAddress("jane@example.com")
    assert mailer.request_email_verification(address) is True
    assert CALLS == [("a", "request_email_verification")]
    assert mailer.drivers[1].verified == []


def test_named_and_default_groups() -> None:
    provider = MappingConfigProvider(
        {
            "mailer": {
                "default": {"driver": "fake", "label": "primary"},
                "backup": {"driver": "fake", "label": "backup"},
            }
        }
    )
    assert [d.label for d in Mailer(config_provider=provider).drivers] == ["primary"]
    mailer = Mailer("default", "backup", config_provider=provider)
    assert [d.label for d in mailer.drivers] == ["primary", "backup"]


def test_sender_and_credentials_are_wrapped() -> None:
    mailer = make_mailer(
        {
            "driver": "fake",
            "sender": {"email": "noreply@example.com"},
            "credentials": {"username": "user", "password": "secret"},
        }
    )
    driver = mailer.drivers[0]
    assert driver.sender == EmailAddress("noreply@example.com", "")
    assert driver.spec.credentials.username == "user"
    assert "secret" not in repr(driver.spec.credentials)


def test_construction_errors() -> None:
    with pytest.raises(ConfigurationError):
        make_mailer()  # no mailer.default group
    with pytest.raises(ConfigurationError):
        make_mailer({})
    with pytest.raises(ConfigurationError):
        make_mailer({"driver": "carrier-pigeon"})
    with pytest.raises(ConfigurationError):
        make_mailer({"driver": "fake", "sender": {"name": "no email"}})
    with pytest.raises(CapabilityContractError):
        make_mailer({"driver": "fake"}, {"driver": "bogus"})


def test_config_file_from_environment(tmp_path: Path, monkeypatch) -> None:
    path = tmp_path / "mail.json"
    path.write_text(json.dumps({"mailer": {"default": {"driver": "fake", "label": "env"}}}))
    monkeypatch.setenv("MAIL_DISPATCH_CONFIG", str(path))
    mailer = Mailer()
    assert isinstance(mailer.drivers[0], FakeMailDriver)
    assert mailer.drivers[0].label == "env"


def test_log_records_successful_sends(tmp_path: Path) -> None:
    db_path = tmp_path / "send_log.db"
    mailer = make_mailer({"driver": "fake", "log_path": str(db_path)})
    mailer.log(True)
    compose(mailer)
    mailer.set_subject("Report")
    assert mailer.send() is True

    entries = SendLog(db_path).entries()
    assert len(entries) == 1
    assert entries[0]["driver"] == "fake"
    assert entries[0]["sender"] == "Example <noreply@example.com>"
    assert entries[0]["recipients"] == "jane@example.com"
    assert entries[0]["subject"] == "Report"


def test_unexpected_driver_exception_falls_back() -> None:
    mailer = make_mailer(
        {"driver": "fake", "label": "a", "crash": True},
        {"driver": "fake", "label": "b"},
    )
    compose(mailer)
    assert mailer.send() is True
    assert CALLS == [("a", "send"), ("b", "send")]
    assert mailer.get_error() is None
    assert mailer.get_errors()[0] == ErrorRecord("Failed to send email: a exploded")


def test_unusable_log_path_does_not_break_operations(tmp_path: Path) -> None:
    # a directory cannot be opened as a SQLite database
    mailer = make_mailer({"driver": "fake", "log_path": str(tmp_path)})
    mailer.log(True)
    compose(mailer)
    assert mailer.send() is True
    assert mailer.get_error() is None


def test_send_log_write_failure_keeps_delivery_result(tmp_path: Path, monkeypatch) -> None:
    mailer = make_mailer({"driver": "fake", "log_path": str(tmp_path / "send_log.db")})
    mailer.log(True)

    def broken_record(self, *args, **kwargs):
        raise sqlite3.OperationalError("unable to open database file")

    monkeypatch.setattr(SendLog, "record", broken_record)
    compose(mailer)
    assert mailer.send() is True
    assert mailer.get_error() is None
    assert CALLS == [("fake", "send")]
