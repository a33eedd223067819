"""Top-level package for mail-dispatch.

This package lets an application compose an email message once and hand
it to one or more interchangeable backends (local MTA, SMTP relays,
transactional email APIs), plus a parallel abstraction for managing
mailing-list subscriptions.

* :class:`~mail_dispatch.mailer.Mailer` broadcasts composition calls to
  every configured mail driver and sends with first-success fallback.
* :class:`~mail_dispatch.subscriber.Subscriber` drives one subscription
  backend and can send a notification through a ``Mailer``.
"""

from __future__ import annotations

from mail_dispatch.errors import (
    CapabilityContractError,
    ConfigurationError,
    ErrorRecord,
    MailDispatchError,
)
from mail_dispatch.mailer import Mailer
from mail_dispatch.models import Attachment, AttachmentType, Credentials, EmailAddress
from mail_dispatch.subscriber import Subscriber

__all__ = [
    "Attachment",
    "AttachmentType",
    "CapabilityContractError",
    "ConfigurationError",
    "Credentials",
    "EmailAddress",
    "ErrorRecord",
    "MailDispatchError",
    "Mailer",
    "Subscriber",
    "config",
    "errors",
    "mailer",
    "models",
    "subscriber",
]

# SemVer version of the package
__version__: str = "0.1.0"
