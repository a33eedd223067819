import sys
from pathlib import Path
from typing import List, Tuple

import pytest

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from mail_dispatch.errors import DeliveryError
from mail_dispatch.mailer.base import MAIL_DRIVERS, BaseMailDriver
from mail_dispatch.subscriber.base import SUBSCRIBER_DRIVERS, BaseSubscriberDriver

# (driver label, operation) in the order the drivers saw them
CALLS: List[Tuple[str, str]] = []


class FakeMailDriver(BaseMailDriver):
    """In-memory driver; ``refuse`` lists operations that report failure.

    ``fail_send`` makes delivery fail cleanly, ``crash`` makes it raise an
    unexpected exception.
    """

    name = "fake"

    def __init__(self, spec) -> None:
        self.label = spec.option("label", "fake")
        self.refuse = set(spec.option("refuse", []))
        self.fail_send = bool(spec.option("fail_send", False))
        self.crash = bool(spec.option("crash", False))
        self.verified = []
        super().__init__(spec)

    def _call(self, operation: str) -> bool:
        CALLS.append((self.label, operation))
        return operation not in self.refuse

    def add_recipient(self, address) -> bool:
        if not self._call("add_recipient"):
            return self._fail(f"{self.label} refuses recipients")
        return super().add_recipient(address)

    def add_cc(self, address) -> bool:
        if not self._call("add_cc"):
            return self._fail(f"{self.label} refuses cc")
        return super().add_cc(address)

    def add_bcc(self, address) -> bool:
        if not self._call("add_bcc"):
            return self._fail(f"{self.label} refuses bcc")
        return super().add_bcc(address)

    def set_subject(self, subject) -> None:
        self._call("set_subject")
        super().set_subject(subject)

    def send(self) -> bool:
        self._call("send")
        return super().send()

    def request_email_verification(self, address) -> bool:
        self._call("request_email_verification")
        self.verified.append(address)
        return self._ok()

    def _deliver(self) -> str:
        if self.crash:
            raise RuntimeError(f"{self.label} exploded")
        if self.fail_send:
            raise DeliveryError(f"{self.label} is down", 503)
        return f"<{len(CALLS)}.{self.label}@test>"


class NotADriver:
    def __init__(self, spec) -> None:
        self.spec = spec


class FakeSubscriberDriver(BaseSubscriberDriver):
    name = "fake"

    def __init__(self, spec) -> None:
        self.fail = bool(spec.option("fail", False))
        self.actions: List[Tuple[str, bool]] = []
        super().__init__(spec)

    def _subscribe(self, force: bool) -> None:
        self.actions.append(("subscribe", force))
        if self.fail:
            raise DeliveryError("Member rejected by list", 400)

    def _unsubscribe(self, delete: bool) -> None:
        self.actions.append(("unsubscribe", delete))
        if self.fail:
            raise DeliveryError("Member not found", 404)


@pytest.fixture(autouse=True)
def fake_drivers(monkeypatch):
    monkeypatch.delenv("MAIL_DISPATCH_CONFIG", raising=False)
    CALLS.clear()
    MAIL_DRIVERS.register("fake", FakeMailDriver)
    MAIL_DRIVERS.register("bogus", NotADriver)
    SUBSCRIBER_DRIVERS.register("fake", FakeSubscriberDriver)
    SUBSCRIBER_DRIVERS.register("bogus", NotADriver)
    yield CALLS
    MAIL_DRIVERS.unregister("fake")
    MAIL_DRIVERS.unregister("bogus")
    SUBSCRIBER_DRIVERS.unregister("fake")
    SUBSCRIBER_DRIVERS.unregister("bogus")
