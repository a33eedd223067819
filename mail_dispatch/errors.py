"""Error records and exceptions shared by drivers and dispatchers.

Drivers never raise out of their operations: failures are captured as an
``ErrorRecord`` and exposed through ``get_error()``.  Exceptions are only
raised while a dispatcher is being constructed, when the configuration
cannot be resolved or a driver does not honour its capability contract.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Union


@dataclass(frozen=True)
class ErrorRecord:
    """The last failure reported by a driver."""

    message: str
    code: int = 0

    def as_dict(self) -> Dict[str, Union[str, int]]:
        return {"message": self.message, "code": self.code}


class MailDispatchError(Exception):
    """Base class for all errors raised by this package."""


class ConfigurationError(MailDispatchError):
    """A configuration group or inline backend spec cannot be used."""


class CapabilityContractError(MailDispatchError, TypeError):
    """A resolved driver does not implement the required interface."""


class DeliveryError(MailDispatchError):
    """Raised inside a driver when an operation fails.

    It never escapes the driver: ``to_record`` turns it into the
    ``ErrorRecord`` returned by ``get_error()``.
    """

    def __init__(self, message: str, code: int = 0) -> None:
        super().__init__(message)
        self.message = message
        self.code = code

    def to_record(self) -> ErrorRecord:
        return ErrorRecord(self.message, self.code)


__all__ = [
    "ErrorRecord",
    "MailDispatchError",
    "ConfigurationError",
    "CapabilityContractError",
    "DeliveryError",
]
