"""The ``Subscriber`` dispatcher.

Unlike ``Mailer``, a ``Subscriber`` wraps exactly one driver.  It adds
one policy on top of the driver: when notification is requested and a
``Mailer`` has been attached with :meth:`Subscriber.do_notify`, a
successful subscribe/unsubscribe is followed by ``mailer.send()``.  If
that notification fails the whole operation reports failure and
``get_error()`` describes the notification error, so callers have to
inspect the error to tell the two causes apart.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional, Union

from mail_dispatch.config import (
    BackendSpec,
    ConfigProvider,
    default_config_provider,
    load_group,
)
from mail_dispatch.errors import ErrorRecord
from mail_dispatch.mailer import Mailer
from mail_dispatch.registry import DriverRegistry
from mail_dispatch.subscriber.base import SUBSCRIBER_DRIVERS, SubscriberDriver

LOGGER = logging.getLogger(__name__)

SubscriberConfig = Union[str, Mapping[str, Any], BackendSpec, None]


class Subscriber:
    """Manage list subscriptions through a single driver.

    Args:
        config: Name of a ``subscriber.<name>`` configuration group or an
            inline backend spec.  ``None`` (or empty) selects
            ``subscriber.default``.
        config_provider: Where named groups are looked up.
        registry: Driver registry used to resolve ``driver``.

    Raises:
        ConfigurationError: The group is undefined or the spec is invalid.
        CapabilityContractError: The driver is not a ``SubscriberDriver``.
    """

    def __init__(
        self,
        config: SubscriberConfig = None,
        *,
        config_provider: Optional[ConfigProvider] = None,
        registry: DriverRegistry[SubscriberDriver] = SUBSCRIBER_DRIVERS,
    ) -> None:
        self._config_provider = config_provider or default_config_provider()
        if not config:
            config = "default"
        if isinstance(config, str):
            config = load_group(self._config_provider, f"subscriber.{config}")
        self._driver = registry.create(BackendSpec.parse(config))
        self._notify = False
        self._mailer: Optional[Mailer] = None
        self._error: Optional[ErrorRecord] = None

    @property
    def driver(self) -> SubscriberDriver:
        return self._driver

    def set_mailing_list(self, mailing_list: str) -> None:
        self._driver.set_mailing_list(mailing_list)

    def set_subscriber(self, email: str, data: Optional[Mapping[str, Any]] = None) -> None:
        """Set the subscriber's email and optional profile data.

        ``data`` may hold organization, first_name, last_name, address_1,
        address_2, city, state, postal_code, country and phone.
        """
        self._driver.set_subscriber(email, data)

    def set_content_type(self, mime: str) -> None:
        self._driver.set_content_type(mime)

    def do_notify(self, send: bool, mailer: Any = None) -> None:
        """Send ``mailer``'s message after each successful operation.

        Anything other than a ``Mailer`` clears the attached mailer.
        """
        self._notify = send if isinstance(send, bool) else False
        self._mailer = mailer if isinstance(mailer, Mailer) else None
        self._driver.do_notify(self._notify, self._mailer)

    def subscribe(self, force: bool = False) -> bool:
        self._error = None
        if not self._driver.subscribe(force):
            return False
        return self._send_notification()

    def unsubscribe(self, delete: bool = False) -> bool:
        self._error = None
        if not self._driver.unsubscribe(delete):
            return False
        return self._send_notification()

    def _send_notification(self) -> bool:
        if not self._notify or self._mailer is None:
            return True
        if self._mailer.send():
            return True
        self._error = self._mailer.get_error() or ErrorRecord(
            "Failed to send notification email."
        )
        LOGGER.warning("Notification email failed: %s", self._error.message)
        return False

    def get_error(self) -> Optional[ErrorRecord]:
        if self._error is not None:
            return self._error
        return self._driver.get_error()


__all__ = ["Subscriber"]
