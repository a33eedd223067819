"""Local transport driver that pipes messages to the system MTA.

The message is assembled by hand rather than with ``email.message`` so
the multipart layout stays byte-compatible with MTAs and filters that
expect it:

* ``multipart/mixed`` (forced whenever attachments are present) wraps the
  body and one part per attachment.  When the body is HTML the first part
  is a nested ``multipart/alternative`` holding the HTML and a plain-text
  fallback (the alt message, or the HTML with its tags stripped).
* ``text/html`` and ``text/plain`` are sent as a single part.

Boundaries are the MD5 of the RFC 2822 send date, prefixed with
``PHP-mixed-`` and ``PHP-alt-``.

Options:

* ``command``: sendmail command line (string or list).  Falls back to
  ``SENDMAIL_COMMAND`` and then ``/usr/sbin/sendmail -t -i``.
* ``timeout``: seconds to wait for the MTA; defaults to 30.
"""

from __future__ import annotations

import hashlib
import shlex
import subprocess
from email.header import Header
from email.utils import formatdate
from typing import List, Optional, Sequence, Tuple

from mail_dispatch.config import BackendSpec, env_option
from mail_dispatch.errors import DeliveryError
from mail_dispatch.mailer.base import (
    BaseMailDriver,
    register_mail_driver,
    strip_line_breaks,
)
from mail_dispatch.models import EmailAddress

CRLF = "\r\n"
DEFAULT_COMMAND = "/usr/sbin/sendmail -t -i"


def _charset(text: str) -> Tuple[str, str]:
    """Return ``(charset, transfer encoding)`` for a text body."""
    if text.isascii():
        return "us-ascii", "7bit"
    return "utf-8", "8bit"


def _address(address: EmailAddress) -> str:
    """Header form of ``address`` with line breaks removed from both parts."""
    return EmailAddress(
        strip_line_breaks(address.email), strip_line_breaks(address.name or "")
    ).as_string()


def _join(addresses: Sequence[EmailAddress]) -> str:
    return ", ".join(_address(address) for address in addresses)


def _encode_header(value: str) -> str:
    if value.isascii():
        return value
    return Header(value, "utf-8").encode()


@register_mail_driver("sendmail")
class SendmailDriver(BaseMailDriver):
    """Deliver through the local ``sendmail`` binary."""

    name = "sendmail"

    def __init__(self, spec: BackendSpec) -> None:
        super().__init__(spec)
        command = env_option(spec, "command", "SENDMAIL_COMMAND", default=DEFAULT_COMMAND)
        self._command: List[str] = (
            shlex.split(command) if isinstance(command, str) else list(command)
        )
        self._timeout = float(spec.option("timeout", 30))

    def compose(self, date: Optional[str] = None) -> Tuple[str, str]:
        """Build the header block and body; both use CRLF line endings."""
        date = date or formatdate(localtime=True)
        headers = "MIME-Version: 1.0" + CRLF
        headers += f"From: {_address(self.sender) if self.sender else ''}" + CRLF
        reply_to = self.reply_address
        if reply_to is not None:
            headers += f"Reply-To: {_address(reply_to)}" + CRLF
        headers += f"To: {_join(self.recipients)}" + CRLF
        if self.cc:
            headers += f"Cc: {_join(self.cc)}" + CRLF
        if self.bcc:
            headers += f"Bcc: {_join(self.bcc)}" + CRLF
        headers += f"Subject: {_encode_header(self.subject)}" + CRLF
        headers += f"Date: {date}" + CRLF
        headers += "Accept-Language: en-US" + CRLF
        headers += "Content-Language: en-US" + CRLF

        boundary = hashlib.md5(date.encode("utf-8")).hexdigest()
        content_type = "multipart/mixed" if self.attachments else self.content_type

        body = ""
        if content_type == "multipart/mixed":
            mixed = f"PHP-mixed-{boundary}"
            headers += f'Content-Type: multipart/mixed; boundary="{mixed}"' + CRLF
            body += f"--{mixed}" + CRLF
            if self.html_body:
                alt = f"PHP-alt-{boundary}"
                body += f'Content-Type: multipart/alternative; boundary="{alt}"' + CRLF
                body += CRLF
                body += f"--{alt}" + CRLF
                body += self._text_part("html", self.message)
                body += f"--{alt}" + CRLF
                body += self._text_part("plain", self.plain_alternative())
                body += f"--{alt}--" + CRLF
            else:
                body += self._text_part("plain", self.message)
            for attachment in self.attachments:
                body += f"--{mixed}" + CRLF
                body += f'Content-Type: {attachment.mime}; name="{attachment.name}"' + CRLF
                body += f"Content-Transfer-Encoding: {attachment.encoding}" + CRLF
                body += (
                    f'Content-Disposition: attachment; filename="{attachment.name}"'
                    + CRLF
                )
                body += CRLF
                body += attachment.data
                body += CRLF
            body += f"--{mixed}--" + CRLF
        elif content_type in ("text/html", "text/plain"):
            charset, encoding = _charset(self.message)
            headers += f'Content-Type: {content_type}; charset="{charset}"' + CRLF
            headers += f"Content-Transfer-Encoding: {encoding}" + CRLF
            body += self.message + CRLF
        else:
            raise DeliveryError("Mail service does not accept the specified content type.")
        return headers, body

    @staticmethod
    def _text_part(subtype: str, text: str) -> str:
        charset, encoding = _charset(text)
        part = f'Content-Type: text/{subtype}; charset="{charset}"' + CRLF
        part += f"Content-Transfer-Encoding: {encoding}" + CRLF
        part += CRLF
        part += text + CRLF
        return part

    def _deliver(self) -> str:
        headers, body = self.compose()
        msg_id = self.new_message_id()
        message = f"Message-ID: {msg_id}" + CRLF + headers + CRLF + body
        try:
            result = subprocess.run(
                self._command,
                input=message.encode("utf-8"),
                capture_output=True,
                timeout=self._timeout,
                check=False,
            )
        except (OSError, subprocess.SubprocessError) as exc:
            raise DeliveryError(f"Failed to deliver email: {exc}") from exc
        if result.returncode != 0:
            detail = result.stderr.decode("utf-8", errors="replace").strip()
            raise DeliveryError(
                f"Failed to deliver email. {detail}".strip(), result.returncode
            )
        return msg_id


__all__ = ["SendmailDriver"]
