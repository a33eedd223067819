"""MailChimp subscription driver (Marketing API v3, via ``requests``).

The mailing list is configured by name and resolved to a list id on first
use.  Members are addressed by the MD5 of their lower-cased email.

* ``subscribe(force=False)`` upserts the member as ``pending`` so MailChimp
  sends its double opt-in confirmation; ``force=True`` subscribes directly.
* ``unsubscribe(delete=False)`` marks the member ``unsubscribed``;
  ``delete=True`` removes the member permanently.

Options (driver config first, then environment):

* ``api_key``: MailChimp API key ``<key>-<dc>`` (``MAILCHIMP_API_KEY``).
* ``base_url``: API root; defaults to ``https://<dc>.api.mailchimp.com/3.0``.
* ``mailing_list``: name of the list to use.
* ``timeout``: HTTP timeout in seconds; defaults to 10.
"""

from __future__ import annotations

import hashlib
import logging
from typing import Any, Dict, Optional

import requests

from mail_dispatch.config import BackendSpec, env_option
from mail_dispatch.errors import ConfigurationError, DeliveryError
from mail_dispatch.subscriber.base import BaseSubscriberDriver, register_subscriber_driver

LOGGER = logging.getLogger(__name__)


def member_hash(email: str) -> str:
    return hashlib.md5(email.strip().lower().encode("utf-8")).hexdigest()


@register_subscriber_driver("mailchimp")
class MailChimpDriver(BaseSubscriberDriver):
    """MailChimp implementation of the ``SubscriberDriver`` interface."""

    name = "mailchimp"

    def __init__(self, spec: BackendSpec) -> None:
        self._api_key = env_option(spec, "api_key", "MAILCHIMP_API_KEY")
        if not self._api_key or "-" not in self._api_key:
            raise ConfigurationError(
                "MailChimp driver requires an api_key of the form <key>-<dc> "
                "(or MAILCHIMP_API_KEY)"
            )
        datacenter = self._api_key.rsplit("-", 1)[1]
        self._base_url = str(
            spec.option("base_url") or f"https://{datacenter}.api.mailchimp.com/3.0"
        ).rstrip("/")
        self._timeout = float(spec.option("timeout", 10))
        self._list_ids: Dict[str, Optional[str]] = {}
        super().__init__(spec)

    def _request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        url = f"{self._base_url}{path}"
        try:
            response = requests.request(
                method, url, auth=("mail-dispatch", self._api_key),
                timeout=self._timeout, **kwargs,
            )
        except requests.RequestException as exc:
            raise DeliveryError(f"Failed to reach MailChimp at {url}: {exc}") from exc
        if response.status_code >= 400:
            raise DeliveryError(_error_detail(response), response.status_code)
        return response

    def list_id(self) -> Optional[str]:
        """Resolve the configured list name to its id (first match wins)."""
        assert self.mailing_list is not None
        if self.mailing_list not in self._list_ids:
            response = self._request(
                "GET", "/lists",
                params={"fields": "lists.id,lists.name", "count": 1000},
            )
            try:
                lists = response.json().get("lists") or []
            except (ValueError, AttributeError) as exc:
                raise DeliveryError(
                    f"MailChimp returned an unreadable list index: {exc}"
                ) from exc
            match = next((item for item in lists if item.get("name") == self.mailing_list), None)
            self._list_ids[self.mailing_list] = match["id"] if match else None
        return self._list_ids[self.mailing_list]

    def _member_path(self, action: str) -> str:
        list_id = self.list_id()
        if list_id is None:
            raise DeliveryError(
                f"Failed to {action} because mailing list "
                f"{self.mailing_list!r} does not exist."
            )
        assert self.subscriber is not None
        return f"/lists/{list_id}/members/{member_hash(self.subscriber)}"

    def _subscribe(self, force: bool) -> None:
        path = self._member_path("subscribe")
        status = "subscribed" if force else "pending"
        body: Dict[str, Any] = {
            "email_address": self.subscriber,
            "status_if_new": status,
            "email_type": self.content_type,
        }
        if force:
            body["status"] = status
        if self.data:
            body["merge_fields"] = self.data
        self._request("PUT", path, json=body)
        LOGGER.info("Subscribed member to MailChimp list %s (%s)", self.mailing_list, status)

    def _unsubscribe(self, delete: bool) -> None:
        path = self._member_path("unsubscribe")
        if delete:
            self._request("POST", f"{path}/actions/delete-permanent")
        else:
            self._request("PATCH", path, json={"status": "unsubscribed"})
        LOGGER.info("Unsubscribed member from MailChimp list %s", self.mailing_list)


def _error_detail(response: requests.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text.strip() or response.reason or "unknown error"
    if isinstance(payload, dict):
        return str(payload.get("detail") or payload.get("title") or payload)
    return str(payload)


__all__ = ["MailChimpDriver", "member_hash"]
