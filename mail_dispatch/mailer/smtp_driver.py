"""SMTP relay drivers.

``SMTPDriver`` builds the message with ``email.message.EmailMessage`` and
delivers it with ``smtplib``, over SSL or with STARTTLS.  It supports
inline images, which are attached as ``multipart/related`` parts of the
HTML body and referenced as ``cid:<cid>``.

Options (driver config first, then environment):

* ``uri``: mapping with ``host`` and ``port``; falls back to
  ``SMTP_HOST``/``SMTP_SERVER`` and ``SMTP_PORT``/``SMTP_SERVER_PORT``.
* ``credentials``: username/password; falls back to
  ``SMTP_USERNAME``/``SMTP_USER`` and ``SMTP_PASSWORD``/``SMTP_APP_PWD``.
* ``use_ssl``: connect with SMTP over SSL (``SMTP_USE_SSL``).
* ``starttls``: upgrade plain connections with STARTTLS; default true.
* ``timeout``: socket timeout in seconds; default 30.
* ``debug``: enable ``smtplib`` debug output (``SMTP_DEBUG``).

If no host is configured but a username is, the host is inferred from the
username's domain (``user@gmail.com`` → ``smtp.gmail.com``).

``gmail`` and ``oneandone`` are presets of the same driver.
"""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from typing import Any, Dict, Mapping, Optional

from mail_dispatch.config import BackendSpec, env_option
from mail_dispatch.errors import DeliveryError
from mail_dispatch.mailer.base import BaseMailDriver, register_mail_driver
from mail_dispatch.models import Attachment, Credentials

LOGGER = logging.getLogger(__name__)

PROVIDER_HOSTS = {
    "gmail.com": "smtp.gmail.com",
    "outlook.com": "smtp-mail.outlook.com",
    "hotmail.com": "smtp-mail.outlook.com",
    "live.com": "smtp-mail.outlook.com",
    "yahoo.com": "smtp.mail.yahoo.com",
}

_TRUTHY = {"1", "true", "yes", "on"}


def _flag(value: Any, default: bool = False) -> bool:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUTHY


def _split_mime(mime: str) -> tuple:
    maintype, _, subtype = mime.partition("/")
    return maintype or "application", subtype or "octet-stream"


@register_mail_driver("smtp")
class SMTPDriver(BaseMailDriver):
    """Deliver through an SMTP relay."""

    name = "smtp"
    supports_embedded_images = True

    default_host: Optional[str] = None
    default_port = 587
    default_use_ssl = False
    default_starttls = True

    def __init__(self, spec: BackendSpec) -> None:
        super().__init__(spec)
        uri: Mapping[str, Any] = spec.option("uri") or {}
        self._host = str(
            uri.get("host")
            or env_option(spec, "host", "SMTP_HOST", "SMTP_SERVER", default="")
        )
        self._port = int(
            uri.get("port")
            or env_option(spec, "port", "SMTP_PORT", "SMTP_SERVER_PORT", default=0)
        )

        credentials = spec.credentials
        if credentials is None:
            username = env_option(spec, "username", "SMTP_USERNAME", "SMTP_USER")
            password = env_option(spec, "password", "SMTP_PASSWORD", "SMTP_APP_PWD")
            if username and password:
                credentials = Credentials(username, password)
        self._credentials = credentials

        self._use_ssl = _flag(
            env_option(spec, "use_ssl", "SMTP_USE_SSL"), self.default_use_ssl
        )
        self._starttls = _flag(spec.option("starttls"), self.default_starttls)
        self._debug = _flag(env_option(spec, "debug", "SMTP_DEBUG"))
        self._timeout = float(spec.option("timeout", 30))

        # Infer host and port from the account domain if not explicitly set.
        if not self._host:
            self._host = self.default_host or self._infer_host()
        if self._port == 0:
            self._port = 465 if self._use_ssl else self.default_port

    def _infer_host(self) -> str:
        username = self._credentials.username if self._credentials else ""
        if "@" in username:
            domain = username.split("@", 1)[1].lower()
            return PROVIDER_HOSTS.get(domain, f"smtp.{domain}")
        return "localhost"

    @property
    def address(self) -> str:
        return f"{self._host}:{self._port}"

    def configure(self, options: Mapping[str, Any]) -> None:
        if "timeout" in options:
            self._timeout = float(options["timeout"])
        if "debug" in options:
            self._debug = _flag(options["debug"])

    def build_message(self, msg_id: str) -> EmailMessage:
        assert self.sender is not None
        msg = EmailMessage()
        msg["Message-ID"] = msg_id
        msg["Subject"] = self.subject
        msg["From"] = self.sender.as_string()
        msg["To"] = ", ".join(a.as_string() for a in self.recipients)
        if self.cc:
            msg["Cc"] = ", ".join(a.as_string() for a in self.cc)
        reply_to = self.reply_address
        if reply_to is not None:
            msg["Reply-To"] = reply_to.as_string()

        if self.html_body:
            if self.alt_message:
                msg.set_content(self.alt_message)
                msg.add_alternative(self.message, subtype="html")
            else:
                msg.set_content(self.message, subtype="html")
            html_part = msg.get_body(preferencelist=("html",))
            for embedded in self.embedded_images:
                self._add_related(html_part, embedded.cid, embedded.image)
        else:
            msg.set_content(self.message)

        for attachment in self.attachments:
            maintype, subtype = _split_mime(attachment.mime)
            msg.add_attachment(
                attachment.contents,
                maintype=maintype,
                subtype=subtype,
                filename=attachment.name,
            )
        return msg

    @staticmethod
    def _add_related(part: Optional[EmailMessage], cid: str, image: Attachment) -> None:
        if part is None:
            return
        maintype, subtype = _split_mime(image.mime)
        part.add_related(
            image.contents,
            maintype=maintype,
            subtype=subtype,
            cid=f"<{cid}>",
            filename=image.name,
        )

    def _connect(self) -> smtplib.SMTP:
        if self._use_ssl:
            return smtplib.SMTP_SSL(self._host, self._port, timeout=self._timeout)
        return smtplib.SMTP(self._host, self._port, timeout=self._timeout)

    def _deliver(self) -> str:
        assert self.sender is not None
        msg_id = self.new_message_id()
        try:
            msg = self.build_message(msg_id)
        except (ValueError, TypeError) as exc:
            raise DeliveryError(f"Failed to build email message: {exc}") from exc
        to_addrs = [a.email for a in self.recipients + self.cc + self.bcc]
        try:
            with self._connect() as smtp:
                if self._debug:
                    smtp.set_debuglevel(1)
                smtp.ehlo()
                if not self._use_ssl and self._starttls:
                    smtp.starttls()
                    smtp.ehlo()
                if self._credentials is not None:
                    smtp.login(self._credentials.username, self._credentials.password)
                refused: Dict[str, Any] = smtp.send_message(
                    msg, from_addr=self.sender.email, to_addrs=to_addrs
                )
        except smtplib.SMTPResponseException as exc:
            raise DeliveryError(
                f"Failed to send email via SMTP server at {self.address}: {exc}",
                exc.smtp_code,
            ) from exc
        except (smtplib.SMTPException, OSError) as exc:
            raise DeliveryError(
                f"Failed to connect or send email via SMTP server at "
                f"{self.address}: {exc}"
            ) from exc
        if refused:
            LOGGER.warning(
                "SMTP server at %s refused %d recipient(s): %s",
                self.address, len(refused), ", ".join(sorted(refused)),
            )
        return msg_id


@register_mail_driver("gmail")
class GmailDriver(SMTPDriver):
    """SMTP preset for Gmail (STARTTLS on port 587)."""

    name = "gmail"
    default_host = "smtp.gmail.com"


@register_mail_driver("oneandone")
class OneAndOneDriver(SMTPDriver):
    """SMTP preset for 1&1 / IONOS; the relay is used without TLS."""

    name = "oneandone"
    default_host = "smtp.1and1.com"
    default_starttls = False


__all__ = ["GmailDriver", "OneAndOneDriver", "SMTPDriver"]
