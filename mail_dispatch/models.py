"""Value objects passed from callers to the mail and subscription drivers.

``EmailAddress``, ``Credentials`` and ``Attachment`` are immutable; drivers
only read them.  Attachments can be built from a file on disk, an
in-memory string or bytes buffer, or a URL fetched with ``requests``.
"""

from __future__ import annotations

import base64
import mimetypes
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union
from urllib.parse import urlparse

import requests

DEFAULT_MIME = "application/octet-stream"

# RFC 2045 caps encoded lines at 76 characters.
_B64_LINE = 76


@dataclass(frozen=True)
class EmailAddress:
    """An email address with an optional display name."""

    email: str
    name: str = ""

    def as_string(self) -> str:
        name = (self.name or "").strip()
        if name:
            return f"{name} <{self.email}>"
        return self.email

    def __str__(self) -> str:
        return self.as_string()

    @classmethod
    def from_config(
        cls, value: Union["EmailAddress", Mapping[str, Any], str]
    ) -> "EmailAddress":
        """Build an address from a config entry (mapping or bare string)."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            return cls(value)
        if isinstance(value, Mapping) and value.get("email"):
            return cls(str(value["email"]), str(value.get("name") or ""))
        raise ValueError(f"Cannot build an email address from {value!r}")


@dataclass(frozen=True)
class Credentials:
    """Username/password pair handed through to a driver."""

    username: str
    password: str

    def as_dict(self) -> Dict[str, str]:
        return {"username": self.username, "password": self.password}

    def __repr__(self) -> str:
        return f"Credentials(username={self.username!r}, password='***')"


class AttachmentType(str, Enum):
    """Where the attachment contents came from."""

    DATA = "data"
    FILE = "file"
    STRING = "string"
    URL = "url"


def _basename(name: str) -> str:
    return re.split(r"[\\/]", name.rstrip("/\\"))[-1] if name else ""


def _guess_mime(name: str) -> str:
    mime, _ = mimetypes.guess_type(name)
    return mime or DEFAULT_MIME


@dataclass(frozen=True)
class Attachment:
    """A file attached to an email message.

    ``name`` is reduced to its basename on construction, so an attachment
    built from ``/tmp/x/report.pdf`` is always called ``report.pdf``.
    """

    type: AttachmentType
    contents: bytes
    name: str
    mime: str = DEFAULT_MIME
    encoding: str = "base64"

    def __post_init__(self) -> None:
        object.__setattr__(self, "type", AttachmentType(self.type))
        object.__setattr__(self, "name", _basename(self.name))
        if isinstance(self.contents, str):
            object.__setattr__(self, "contents", self.contents.encode("utf-8"))

    @property
    def data(self) -> str:
        """Base64 of the contents split into CRLF-terminated lines."""
        encoded = base64.b64encode(self.contents).decode("ascii")
        return "".join(
            encoded[i:i + _B64_LINE] + "\r\n"
            for i in range(0, len(encoded), _B64_LINE)
        )

    @classmethod
    def from_file(
        cls,
        path: Union[str, Path],
        name: Optional[str] = None,
        mime: Optional[str] = None,
    ) -> "Attachment":
        path = Path(path)
        name = name or path.name
        return cls(
            AttachmentType.FILE,
            path.read_bytes(),
            name,
            mime or _guess_mime(name),
        )

    @classmethod
    def from_string(
        cls, text: str, name: str, mime: Optional[str] = None
    ) -> "Attachment":
        return cls(
            AttachmentType.STRING,
            text.encode("utf-8"),
            name,
            mime or _guess_mime(name),
        )

    @classmethod
    def from_data(
        cls, data: bytes, name: str, mime: Optional[str] = None
    ) -> "Attachment":
        return cls(AttachmentType.DATA, bytes(data), name, mime or _guess_mime(name))

    @classmethod
    def from_url(
        cls,
        url: str,
        name: Optional[str] = None,
        mime: Optional[str] = None,
        timeout: float = 10,
    ) -> "Attachment":
        """Download ``url`` and wrap the body as an attachment.

        Raises:
            requests.HTTPError: If the server answers with an error status.
        """
        response = requests.get(url, timeout=timeout)
        response.raise_for_status()
        name = name or _basename(urlparse(url).path) or "attachment"
        if mime is None:
            header = response.headers.get("Content-Type", "")
            mime = header.split(";", 1)[0].strip() or _guess_mime(name)
        return cls(AttachmentType.URL, response.content, name, mime)


__all__ = [
    "Attachment",
    "AttachmentType",
    "Credentials",
    "EmailAddress",
]
