"""Name → factory registry used to resolve configured drivers.

A registry is bound to one capability contract (an abstract base class).
``create`` instantiates the factory registered for ``spec.driver`` and
rejects the result if it does not implement that contract, so a
dispatcher is either built with valid drivers or not built at all.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Generic, List, Optional, Type, TypeVar

from mail_dispatch.config import BackendSpec
from mail_dispatch.errors import CapabilityContractError, ConfigurationError

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")
DriverFactory = Callable[[BackendSpec], Any]


class DriverRegistry(Generic[T]):
    """Registry of driver factories for a single capability contract."""

    def __init__(self, kind: str, contract: Type[T]) -> None:
        self.kind = kind
        self.contract = contract
        self._factories: Dict[str, DriverFactory] = {}

    def register(
        self, name: str, factory: Optional[DriverFactory] = None
    ) -> Any:
        """Register ``factory`` under ``name``; usable as a class decorator."""
        key = name.strip().lower()

        def decorator(obj: DriverFactory) -> DriverFactory:
            self._factories[key] = obj
            return obj

        if factory is not None:
            return decorator(factory)
        return decorator

    def unregister(self, name: str) -> None:
        self._factories.pop(name.strip().lower(), None)

    def names(self) -> List[str]:
        return sorted(self._factories)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.strip().lower() in self._factories

    def resolve(self, name: str) -> DriverFactory:
        try:
            return self._factories[name.strip().lower()]
        except KeyError:
            raise ConfigurationError(
                f"Unknown {self.kind} driver {name!r}. "
                f"Registered drivers: {', '.join(self.names()) or 'none'}"
            ) from None

    def create(self, spec: BackendSpec) -> T:
        """Instantiate the driver for ``spec`` and check its contract."""
        factory = self.resolve(spec.driver)
        driver = factory(spec)
        if not isinstance(driver, self.contract):
            raise CapabilityContractError(
                f"Cannot cast {type(driver).__name__} to "
                f"{self.contract.__name__}: driver {spec.driver!r} does not "
                f"implement the {self.kind} capability contract"
            )
        LOGGER.debug("Resolved %s driver %r to %s", self.kind, spec.driver,
                     type(driver).__name__)
        return driver


__all__ = ["DriverFactory", "DriverRegistry"]
