"""Capability contract for mailing-list subscription drivers."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Mapping, Optional

from mail_dispatch.config import BackendSpec
from mail_dispatch.errors import DeliveryError, ErrorRecord
from mail_dispatch.registry import DriverRegistry

LOGGER = logging.getLogger(__name__)

# caller key -> provider merge field
_FIELDS = {
    "organization": "ORG",
    "first_name": "FIRST_NAME",
    "last_name": "LAST_NAME",
    "phone": "PHONE",
}
# caller key -> key inside the ADDRESS merge field
_ADDRESS_FIELDS = {
    "address_1": "addr1",
    "address_2": "addr2",
    "city": "city",
    "state": "state",
    "postal_code": "zip",
    "country": "country",
}


def normalize_subscriber_data(data: Any) -> Optional[Dict[str, Any]]:
    """Map caller subscriber data to merge fields, dropping empty values.

    Returns ``None`` when ``data`` is not a mapping.
    """
    if not isinstance(data, Mapping):
        return None
    normalized: Dict[str, Any] = {}
    for key, field in _FIELDS.items():
        if data.get(key):
            normalized[field] = data[key]
    address = {
        field: data[key] for key, field in _ADDRESS_FIELDS.items() if data.get(key)
    }
    if address:
        normalized["ADDRESS"] = address
    return normalized


def email_type(mime: Any) -> str:
    """``html`` for HTML capable content types, otherwise ``text``."""
    if str(mime).strip().lower() in ("multipart/mixed", "text/html"):
        return "html"
    return "text"


class SubscriberDriver(ABC):
    """Interface every subscription backend implements."""

    @abstractmethod
    def set_mailing_list(self, mailing_list: str) -> None: ...

    @abstractmethod
    def set_subscriber(self, email: str, data: Any = None) -> None: ...

    @abstractmethod
    def set_content_type(self, mime: str) -> None: ...

    @abstractmethod
    def do_notify(self, send: bool, mailer: Any = None) -> None: ...

    @abstractmethod
    def subscribe(self, force: bool = False) -> bool: ...

    @abstractmethod
    def unsubscribe(self, delete: bool = False) -> bool: ...

    @abstractmethod
    def get_error(self) -> Optional[ErrorRecord]: ...


class BaseSubscriberDriver(SubscriberDriver):
    """Subscriber state shared by the built-in drivers.

    Subclasses implement ``_subscribe`` and ``_unsubscribe`` and raise
    ``DeliveryError`` when the provider rejects the request.

    ``notify`` and ``external_mailer`` mirror the last ``do_notify`` call:
    whether a notification was requested and whether the ``Subscriber``
    will send it through a ``Mailer``.  A driver whose provider can send
    its own confirmation mails reads them to do so only when
    ``notify and not external_mailer``.
    """

    name = "base"

    def __init__(self, spec: BackendSpec) -> None:
        self.spec = spec
        self.mailing_list: Optional[str] = None
        self.subscriber: Optional[str] = None
        self.data: Optional[Dict[str, Any]] = None
        self.content_type = "text"
        self.notify = False
        self.external_mailer = False
        self._error: Optional[ErrorRecord] = None
        mailing_list = spec.option("mailing_list")
        if mailing_list:
            self.set_mailing_list(mailing_list)

    def set_mailing_list(self, mailing_list: str) -> None:
        self.mailing_list = mailing_list or None

    def set_subscriber(self, email: str, data: Any = None) -> None:
        self.subscriber = email
        self.data = normalize_subscriber_data(data)

    def set_content_type(self, mime: str) -> None:
        self.content_type = email_type(mime)

    def do_notify(self, send: bool, mailer: Any = None) -> None:
        self.notify = send if isinstance(send, bool) else False
        self.external_mailer = mailer is not None

    def _check_ready(self, action: str) -> None:
        if not self.mailing_list:
            raise DeliveryError(
                f"Failed to {action} because no mailing list has been set."
            )
        if not self.subscriber:
            raise DeliveryError(f"Failed to {action} because no subscriber has been set.")

    def _run(self, action: str, operation: Any, flag: bool) -> bool:
        try:
            self._check_ready(action)
            operation(flag)
        except DeliveryError as exc:
            self._error = exc.to_record()
            LOGGER.debug("%s driver failed to %s: %s", self.name, action, exc.message)
            return False
        self._error = None
        return True

    def subscribe(self, force: bool = False) -> bool:
        return self._run("subscribe", self._subscribe, force)

    def unsubscribe(self, delete: bool = False) -> bool:
        return self._run("unsubscribe", self._unsubscribe, delete)

    @abstractmethod
    def _subscribe(self, force: bool) -> None: ...

    @abstractmethod
    def _unsubscribe(self, delete: bool) -> None: ...

    def get_error(self) -> Optional[ErrorRecord]:
        return self._error


SUBSCRIBER_DRIVERS: DriverRegistry[SubscriberDriver] = DriverRegistry(
    "subscriber", SubscriberDriver
)
register_subscriber_driver = SUBSCRIBER_DRIVERS.register


__all__ = [
    "BaseSubscriberDriver",
    "SUBSCRIBER_DRIVERS",
    "SubscriberDriver",
    "email_type",
    "normalize_subscriber_data",
    "register_subscriber_driver",
]
