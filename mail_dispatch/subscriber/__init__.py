"""Mailing-list subscription drivers and the ``Subscriber`` dispatcher.

Importing this subpackage registers the built-in ``mailchimp`` driver.
"""

from __future__ import annotations

from mail_dispatch.subscriber.base import (
    SUBSCRIBER_DRIVERS,
    BaseSubscriberDriver,
    SubscriberDriver,
    normalize_subscriber_data,
    register_subscriber_driver,
)
from mail_dispatch.subscriber import mailchimp_driver
from mail_dispatch.subscriber.dispatcher import Subscriber

__all__ = [
    "BaseSubscriberDriver",
    "SUBSCRIBER_DRIVERS",
    "Subscriber",
    "SubscriberDriver",
    "mailchimp_driver",
    "normalize_subscriber_data",
    "register_subscriber_driver",
]
