"""Capability contract for mail drivers and the state they share.

``MailDriver`` is the interface every backend must implement.  Each
operation reports success locally (a boolean where it can fail) and
records an ``ErrorRecord`` readable through ``get_error()``, so the
dispatcher can aggregate results without exceptions crossing driver
boundaries.

``BaseMailDriver`` holds the message being composed (addresses, subject,
bodies, attachments) and implements ``send`` as a template method around
``_deliver``, which concrete drivers override.
"""

from __future__ import annotations

import logging
import re
import sqlite3
from abc import ABC, abstractmethod
from dataclasses import dataclass
from email.utils import make_msgid
from typing import Any, List, Mapping, Optional

from mail_dispatch.config import BackendSpec
from mail_dispatch.errors import DeliveryError, ErrorRecord
from mail_dispatch.mailer.send_log import SendLog
from mail_dispatch.models import Attachment, EmailAddress
from mail_dispatch.registry import DriverRegistry

LOGGER = logging.getLogger(__name__)

DEFAULT_SUBJECT = "(no subject)"
SUPPORTED_CONTENT_TYPES = ("multipart/mixed", "text/html", "text/plain")

# Same set as PCRE's \R: CRLF, LF, CR, VT, FF, NEL, LS, PS.
_LINE_BREAKS = re.compile("\r\n|[\n\x0b\x0c\r\x85\u2028\u2029]")
_TAGS = re.compile(r"<[^>]*>")


def strip_line_breaks(value: str) -> str:
    return _LINE_BREAKS.sub("", value)


def sanitize_subject(subject: Any) -> str:
    """Strip line breaks (header injection) and fall back to a placeholder."""
    if not isinstance(subject, str):
        return DEFAULT_SUBJECT
    subject = strip_line_breaks(subject).strip()
    return subject or DEFAULT_SUBJECT


def strip_tags(html: str) -> str:
    return _TAGS.sub("", html)


class MailDriver(ABC):
    """Interface every mail backend implements."""

    @abstractmethod
    def configure(self, options: Mapping[str, Any]) -> None:
        """Apply backend specific options; unknown keys are ignored."""

    @abstractmethod
    def add_recipient(self, address: EmailAddress) -> bool: ...

    @abstractmethod
    def add_cc(self, address: EmailAddress) -> bool: ...

    @abstractmethod
    def add_bcc(self, address: EmailAddress) -> bool: ...

    @abstractmethod
    def set_sender(self, address: EmailAddress) -> bool: ...

    @abstractmethod
    def set_reply_to(self, address: EmailAddress) -> bool: ...

    @abstractmethod
    def set_subject(self, subject: Any) -> None: ...

    @abstractmethod
    def set_content_type(self, mime: str) -> None: ...

    @abstractmethod
    def set_message(self, message: Any) -> None: ...

    @abstractmethod
    def set_alt_message(self, message: Any) -> None: ...

    @abstractmethod
    def add_attachment(self, attachment: Attachment) -> bool: ...

    @abstractmethod
    def set_embedded_image(self, cid: str, file: str, alias: str = "") -> bool:
        """Embed an image referenced as ``cid:<cid>`` in an HTML body."""

    @abstractmethod
    def send(self) -> bool:
        """Attempt delivery; on failure ``get_error()`` explains why."""

    @abstractmethod
    def get_error(self) -> Optional[ErrorRecord]: ...

    @abstractmethod
    def log(self, enabled: bool) -> None: ...

    def request_email_verification(self, address: EmailAddress) -> bool:
        return False


@dataclass(frozen=True)
class EmbeddedImage:
    cid: str
    image: Attachment


class BaseMailDriver(MailDriver):
    """Message state and error bookkeeping shared by the built-in drivers.

    Subclasses implement ``_deliver`` and raise ``DeliveryError`` on
    failure.  ``supports_embedded_images`` switches ``set_embedded_image``
    between storing the image and reporting the feature as unsupported.
    """

    name = "base"
    supports_embedded_images = False

    def __init__(self, spec: BackendSpec) -> None:
        self.spec = spec
        self.recipients: List[EmailAddress] = []
        self.cc: List[EmailAddress] = []
        self.bcc: List[EmailAddress] = []
        self.sender: Optional[EmailAddress] = None
        self.reply_to: Optional[EmailAddress] = None
        self.subject = DEFAULT_SUBJECT
        self.content_type = "text/plain"
        self.message = ""
        self.alt_message = ""
        self.attachments: List[Attachment] = []
        self.embedded_images: List[EmbeddedImage] = []
        self._error: Optional[ErrorRecord] = None
        self._log_enabled = False
        self._send_log: Optional[SendLog] = None

        if spec.sender is not None:
            self.set_sender(spec.sender)
        if spec.reply_to is not None:
            self.set_reply_to(spec.reply_to)
        if spec.option("log"):
            self.log(True)

    # -- error channel --------------------------------------------------
    def _ok(self) -> bool:
        self._error = None
        return True

    def _fail(self, message: str, code: int = 0) -> bool:
        self._error = ErrorRecord(message, code)
        return False

    def get_error(self) -> Optional[ErrorRecord]:
        return self._error

    # -- composition ----------------------------------------------------
    def configure(self, options: Mapping[str, Any]) -> None:
        pass

    def add_recipient(self, address: EmailAddress) -> bool:
        self.recipients.append(address)
        return self._ok()

    def add_cc(self, address: EmailAddress) -> bool:
        self.cc.append(address)
        return self._ok()

    def add_bcc(self, address: EmailAddress) -> bool:
        self.bcc.append(address)
        return self._ok()

    def set_sender(self, address: EmailAddress) -> bool:
        self.sender = address
        return self._ok()

    def set_reply_to(self, address: EmailAddress) -> bool:
        self.reply_to = address
        return self._ok()

    def set_subject(self, subject: Any) -> None:
        self.subject = sanitize_subject(subject)

    def set_content_type(self, mime: str) -> None:
        self.content_type = str(mime).strip().lower()

    def set_message(self, message: Any) -> None:
        self.message = message if isinstance(message, str) else ""

    def set_alt_message(self, message: Any) -> None:
        self.alt_message = message if isinstance(message, str) else ""

    def add_attachment(self, attachment: Attachment) -> bool:
        self.attachments.append(attachment)
        return self._ok()

    def set_embedded_image(self, cid: str, file: str, alias: str = "") -> bool:
        if not self.supports_embedded_images:
            return self._fail(
                "Failed to embed image because mail service does not "
                "support this feature."
            )
        try:
            image = Attachment.from_file(file, name=alias or None)
        except OSError as exc:
            return self._fail(f"Failed to embed image {file}: {exc}")
        self.embedded_images.append(EmbeddedImage(cid, image))
        return self._ok()

    def request_email_verification(self, address: EmailAddress) -> bool:
        return self._fail(
            "Failed to request email verification because mail service "
            "does not support this feature."
        )

    # -- delivery -------------------------------------------------------
    @property
    def reply_address(self) -> Optional[EmailAddress]:
        return self.reply_to or self.sender

    @property
    def html_body(self) -> bool:
        return self.content_type == "text/html"

    def plain_alternative(self) -> str:
        return self.alt_message or strip_tags(self.message)

    def _check_ready(self) -> None:
        if self.sender is None:
            raise DeliveryError("Failed to send email because no sender has been set.")
        if not self.recipients:
            raise DeliveryError("Failed to send email because no recipient has been set.")
        if not self.message:
            raise DeliveryError("Failed to send email because no message has been set.")
        if self.content_type not in SUPPORTED_CONTENT_TYPES:
            raise DeliveryError(
                "Mail service does not accept the specified content type "
                f"{self.content_type!r}."
            )

    def new_message_id(self) -> str:
        domain = self.sender.email.rpartition("@")[2] if self.sender else None
        return make_msgid(domain=domain or None)

    @abstractmethod
    def _deliver(self) -> str:
        """Hand the message to the transport and return its message id."""

    def send(self) -> bool:
        try:
            self._check_ready()
            msg_id = self._deliver()
        except DeliveryError as exc:
            self._error = exc.to_record()
            LOGGER.debug("%s driver failed to send: %s", self.name, exc.message)
            return False
        except Exception as exc:
            # send() never raises; the dispatcher relies on False to fall back.
            LOGGER.exception("%s driver crashed while sending", self.name)
            self._error = ErrorRecord(f"Failed to send email: {exc}")
            return False
        self._error = None
        LOGGER.info(
            "Sent %s via %s driver to %d recipient(s)",
            msg_id, self.name, len(self.recipients) + len(self.cc) + len(self.bcc),
        )
        if self._log_enabled:
            self._record(msg_id)
        return True

    # -- logging --------------------------------------------------------
    def log(self, enabled: bool) -> None:
        self._log_enabled = bool(enabled)
        if self._log_enabled and self._send_log is None:
            try:
                self._send_log = SendLog(self.spec.option("log_path"))
            except (sqlite3.Error, OSError) as exc:
                LOGGER.warning("%s driver cannot open send log: %s", self.name, exc)

    def _record(self, msg_id: str) -> None:
        if self._send_log is None:
            return
        try:
            self._send_log.record(
                msg_id,
                driver=self.name,
                sender=self.sender.as_string() if self.sender else "",
                recipients=[a.as_string() for a in self.recipients],
                subject=self.subject,
            )
        except (sqlite3.Error, OSError) as exc:
            LOGGER.warning("Failed to record %s in send log: %s", msg_id, exc)


MAIL_DRIVERS: DriverRegistry[MailDriver] = DriverRegistry("mail", MailDriver)
register_mail_driver = MAIL_DRIVERS.register


__all__ = [
    "BaseMailDriver",
    "DEFAULT_SUBJECT",
    "EmbeddedImage",
    "MAIL_DRIVERS",
    "MailDriver",
    "SUPPORTED_CONTENT_TYPES",
    "register_mail_driver",
    "sanitize_subject",
    "strip_line_breaks",
    "strip_tags",
]
