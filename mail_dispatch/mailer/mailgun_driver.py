"""Mailgun-based mail driver.

Sends through the Mailgun HTTP API (``POST {base_url}/messages``) using
``requests``.  Attachments and inline images are uploaded as multipart
files; an inline image is referenced from the HTML body as
``cid:<cid>``.

Options (driver config first, then environment):

* ``api_key``: Mailgun API key (``MAILGUN_API_KEY``).
* ``domain``: sending domain (``MAILGUN_DOMAIN``).
* ``base_url``: API base URL (``MAILGUN_BASE_URL``); defaults to
  ``https://api.mailgun.net/v3/<domain>``.
* ``timeout``: HTTP timeout in seconds; defaults to 10.

When no sender is configured, ``mail@<domain>`` is used.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Tuple

import requests

from mail_dispatch.config import BackendSpec, env_option
from mail_dispatch.errors import ConfigurationError, DeliveryError
from mail_dispatch.mailer.base import BaseMailDriver, register_mail_driver
from mail_dispatch.models import EmailAddress


@register_mail_driver("mailgun")
class MailgunDriver(BaseMailDriver):
    """Mailgun implementation of the ``MailDriver`` interface."""

    name = "mailgun"
    supports_embedded_images = True

    def __init__(self, spec: BackendSpec) -> None:
        super().__init__(spec)
        self._api_key = env_option(spec, "api_key", "MAILGUN_API_KEY")
        self._domain = env_option(spec, "domain", "MAILGUN_DOMAIN")
        if not self._api_key or not self._domain:
            raise ConfigurationError(
                "Mailgun driver requires an api_key and a domain "
                "(or MAILGUN_API_KEY and MAILGUN_DOMAIN)"
            )
        self._base_url = str(
            env_option(
                spec,
                "base_url",
                "MAILGUN_BASE_URL",
                default=f"https://api.mailgun.net/v3/{self._domain}",
            )
        ).rstrip("/")
        self._timeout = float(spec.option("timeout", 10))
        self._tags: List[str] = []
        if self.sender is None:
            self.sender = EmailAddress(f"mail@{self._domain}")

    def configure(self, options: Mapping[str, Any]) -> None:
        """Accepts ``tags`` (list of Mailgun tags) and ``timeout``."""
        if "tags" in options:
            self._tags = [str(tag) for tag in options["tags"]]
        if "timeout" in options:
            self._timeout = float(options["timeout"])

    def build_payload(self) -> Tuple[Dict[str, Any], List[Tuple[str, Tuple[str, bytes, str]]]]:
        """Return the form fields and files for the ``messages`` endpoint."""
        assert self.sender is not None
        data: Dict[str, Any] = {
            "from": self.sender.as_string(),
            "to": [a.as_string() for a in self.recipients],
            "subject": self.subject,
        }
        if self.cc:
            data["cc"] = [a.as_string() for a in self.cc]
        if self.bcc:
            data["bcc"] = [a.as_string() for a in self.bcc]
        if self.reply_to is not None:
            data["h:Reply-To"] = self.reply_to.as_string()
        if self.html_body:
            data["html"] = self.message
            data["text"] = self.plain_alternative()
        else:
            data["text"] = self.message
        if self._tags:
            data["o:tag"] = self._tags

        files = [
            ("attachment", (a.name, a.contents, a.mime)) for a in self.attachments
        ]
        files.extend(
            ("inline", (e.cid, e.image.contents, e.image.mime))
            for e in self.embedded_images
        )
        return data, files

    def _deliver(self) -> str:
        url = f"{self._base_url}/messages"
        auth = ("api", self._api_key)
        data, files = self.build_payload()
        try:
            response = requests.post(
                url, auth=auth, data=data, files=files or None, timeout=self._timeout
            )
        except requests.RequestException as exc:
            raise DeliveryError(f"Failed to reach Mailgun at {url}: {exc}") from exc
        if response.status_code >= 400:
            raise DeliveryError(
                f"Mailgun rejected the message: {_error_detail(response)}",
                response.status_code,
            )
        try:
            payload = response.json()
        except ValueError:
            payload = {}
        return str(payload.get("id") or self.new_message_id())


def _error_detail(response: requests.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text.strip() or response.reason or "unknown error"
    if isinstance(payload, dict) and payload.get("message"):
        return str(payload["message"])
    return response.text.strip()


__all__ = ["MailgunDriver"]
