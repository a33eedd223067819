"""The ``Mailer`` dispatcher.

A ``Mailer`` owns an ordered, fixed list of mail drivers built from one
or more backend specs.  Composition calls (recipients, subject, body,
attachments, ...) are broadcast to every driver in order and their
boolean results are AND-ed.  ``send`` is different: it walks the drivers
in order and stops at the first one that delivers, so later drivers act
as fallbacks for earlier ones.

Example::

    mailer = Mailer(
        {"driver": "smtp", "uri": {"host": "relay.internal"}},
        {"driver": "mailgun", "api_key": "key-123", "domain": "mg.example.com"},
    )
    mailer.set_sender(EmailAddress("noreply@example.com", "Example"))
    mailer.add_recipient(EmailAddress("jane@example.com"))
    mailer.set_subject("Welcome")
    mailer.set_message("Hello!")
    if not mailer.send():
        print(mailer.get_error())
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, List, Mapping, Optional, Tuple, Union

from mail_dispatch.config import (
    BackendSpec,
    ConfigProvider,
    default_config_provider,
    load_group,
)
from mail_dispatch.errors import ErrorRecord
from mail_dispatch.mailer.base import MAIL_DRIVERS, MailDriver
from mail_dispatch.models import Attachment, EmailAddress
from mail_dispatch.registry import DriverRegistry

LOGGER = logging.getLogger(__name__)

MailerConfig = Union[str, Mapping[str, Any], BackendSpec]

_LIST_ROUTES = {
    "recipient": "add_recipient",
    "cc": "add_cc",
    "bcc": "add_bcc",
}


class Mailer:
    """Fan composition calls out to every driver; send with fallback.

    Args:
        *configs: Backend specs, each either the name of a ``mailer.<name>``
            configuration group or an inline mapping.  With no arguments the
            ``mailer.default`` group is used.
        config_provider: Where named groups are looked up; defaults to
            :func:`~mail_dispatch.config.default_config_provider`.
        registry: Driver registry used to resolve ``driver`` identifiers.

    Raises:
        ConfigurationError: A group is undefined, an inline spec is empty or
            invalid, or a driver identifier is unknown.
        CapabilityContractError: A resolved driver is not a ``MailDriver``.
    """

    def __init__(
        self,
        *configs: MailerConfig,
        config_provider: Optional[ConfigProvider] = None,
        registry: DriverRegistry[MailDriver] = MAIL_DRIVERS,
    ) -> None:
        self._config_provider = config_provider or default_config_provider()
        if not configs:
            configs = ("default",)
        specs = [self._load_spec(config) for config in configs]
        self._drivers: Tuple[MailDriver, ...] = tuple(
            registry.create(spec) for spec in specs
        )
        self._delivered = False

    def _load_spec(self, config: MailerConfig) -> BackendSpec:
        if isinstance(config, str):
            config = load_group(self._config_provider, f"mailer.{config}")
        return BackendSpec.parse(config)

    @property
    def drivers(self) -> Tuple[MailDriver, ...]:
        return self._drivers

    def _broadcast(self, operation: str, *args: Any) -> bool:
        self._delivered = False
        successful = True
        for driver in self._drivers:
            if not getattr(driver, operation)(*args):
                successful = False
        return successful

    def _broadcast_void(self, operation: str, *args: Any) -> None:
        self._delivered = False
        for driver in self._drivers:
            getattr(driver, operation)(*args)

    def configure(self, options: Mapping[str, Any]) -> None:
        """Pass backend specific options to every driver."""
        self._broadcast_void("configure", options)

    def add_mailing_list(self, mailing_list: Union[str, Mapping[str, Any]]) -> bool:
        """Add every address of a mailing list.

        ``mailing_list`` is either the name of a ``mailer-lists.<name>``
        group or a mapping of category (``recipient``, ``cc`` or ``bcc``,
        case-insensitive) to a list of addresses.  Unknown categories are
        skipped.  Always returns ``True``; per-address failures are only
        visible through :meth:`get_error`.
        """
        if isinstance(mailing_list, str):
            mailing_list = load_group(self._config_provider, f"mailer-lists.{mailing_list}")
        for category, entries in mailing_list.items():
            operation = _LIST_ROUTES.get(str(category).lower())
            if operation is None:
                LOGGER.debug("Skipping unknown mailing list category %r", category)
                continue
            for entry in _as_entries(entries):
                getattr(self, operation)(EmailAddress.from_config(entry))
        return True

    def add_recipient(self, address: EmailAddress) -> bool:
        return self._broadcast("add_recipient", address)

    def add_cc(self, address: EmailAddress) -> bool:
        return self._broadcast("add_cc", address)

    def add_bcc(self, address: EmailAddress) -> bool:
        return self._broadcast("add_bcc", address)

    def set_sender(self, address: EmailAddress) -> bool:
        return self._broadcast("set_sender", address)

    def set_reply_to(self, address: EmailAddress) -> bool:
        return self._broadcast("set_reply_to", address)

    def set_subject(self, subject: Any) -> None:
        self._broadcast_void("set_subject", subject)

    def set_content_type(self, mime: str) -> None:
        """``multipart/mixed``, ``text/html`` or ``text/plain``."""
        self._broadcast_void("set_content_type", mime)

    def set_message(self, message: Any) -> None:
        self._broadcast_void("set_message", message)

    def set_alt_message(self, message: Any) -> None:
        self._broadcast_void("set_alt_message", message)

    def add_attachment(self, attachment: Attachment) -> bool:
        return self._broadcast("add_attachment", attachment)

    def set_embedded_image(self, cid: str, file: str, alias: str = "") -> bool:
        return self._broadcast("set_embedded_image", cid, file, alias)

    def log(self, enabled: bool) -> None:
        self._broadcast_void("log", enabled)

    def send(self) -> bool:
        """Try each driver in order and stop at the first delivery."""
        self._delivered = False
        for index, driver in enumerate(self._drivers):
            if driver.send():
                self._delivered = True
                return True
            if index + 1 < len(self._drivers):
                error = driver.get_error()
                LOGGER.warning(
                    "Driver %d (%s) failed to send, falling back: %s",
                    index, type(driver).__name__, error.message if error else "unknown error",
                )
        return False

    def get_error(self) -> Optional[ErrorRecord]:
        """First error reported by a driver, in configured order.

        ``None`` right after a successful :meth:`send`, even when a driver
        ahead of the one that delivered had failed.
        """
        if self._delivered:
            return None
        for driver in self._drivers:
            error = driver.get_error()
            if error is not None:
                return error
        return None

    def get_errors(self) -> List[Optional[ErrorRecord]]:
        """Each driver's last error, in configured order."""
        return [driver.get_error() for driver in self._drivers]

    def request_email_verification(self, address: EmailAddress) -> bool:
        """Ask the first configured driver to verify ``address``."""
        self._delivered = False
        return self._drivers[0].request_email_verification(address)


def _as_entries(entries: Any) -> Iterable[Any]:
    if isinstance(entries, (str, Mapping)):
        return [entries]
    return entries or []


__all__ = ["Mailer"]
