"""Mail drivers and the ``Mailer`` dispatcher.

This subpackage defines the ``MailDriver`` capability contract along with
concrete implementations for the local MTA (``sendmail``), SMTP relays
(``smtp``, ``gmail``, ``oneandone``) and the Mailgun HTTP API
(``mailgun``).  Importing it registers the built-in drivers, so client
code can select a backend by name in configuration without changing the
calling semantics.
"""

from __future__ import annotations

from mail_dispatch.mailer.base import (
    MAIL_DRIVERS,
    BaseMailDriver,
    MailDriver,
    register_mail_driver,
)
from mail_dispatch.mailer import mailgun_driver, sendmail_driver, smtp_driver
from mail_dispatch.mailer.dispatcher import Mailer
from mail_dispatch.mailer.send_log import SendLog

__all__ = [
    "BaseMailDriver",
    "MAIL_DRIVERS",
    "MailDriver",
    "Mailer",
    "SendLog",
    "mailgun_driver",
    "register_mail_driver",
    "sendmail_driver",
    "smtp_driver",
]
