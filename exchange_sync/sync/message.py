"""
Mail message and folder models for Exchange mail synchronization.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from email.message import EmailMessage
from email.utils import format_datetime as format_rfc2822_date
from typing import Any, Optional

from exchange_sync.utils.timeutil import (
    format_datetime,
    parse_datetime,
    to_epoch_ms,
    utcnow,
)

# Local folder names -> Exchange distinguished folder ids
FOLDER_NAME_MAP = {
    "Inbox": "inbox",
    "Sent": "sentitems",
    "Sent Items": "sentitems",
    "Drafts": "drafts",
    "Deleted Items": "deleteditems",
    "Trash": "deleteditems",
    "Junk": "junkemail",
    "Spam": "junkemail",
}

# Folders synced first, in this order; everything else follows by name
PRIORITY_FOLDERS = ("inbox", "sentitems", "drafts", "deleteditems")


def map_folder_name(name: str) -> str:
    """Map a local folder name to the remote folder id to list."""
    return FOLDER_NAME_MAP.get(name, name.lower())


def folder_sort_key(name: str) -> tuple[int, str]:
    """Sort key placing priority folders first, then the rest by name."""
    lowered = name.lower()
    if lowered in PRIORITY_FOLDERS:
        return (PRIORITY_FOLDERS.index(lowered), "")
    return (len(PRIORITY_FOLDERS), name)


def format_address(address: Optional[dict[str, str]]) -> Optional[str]:
    """
    Render an Exchange mailbox as a header address.

    {"name": "A", "email": "a@x.com"} -> '"A" <a@x.com>'; either part alone is
    returned bare; an empty mailbox gives None.
    """
    if not address:
        return None
    name = address.get("name")
    email = address.get("email")
    if name and email:
        return f'"{name}" <{email}>'
    return email or name or None


def format_addresses(addresses: Optional[list[dict[str, str]]]) -> list[str]:
    if not isinstance(addresses, list):
        return []
    return [a for a in (format_address(addr) for addr in addresses) if a]


@dataclass
class RemoteFolder:
    """A folder in the Exchange mailbox hierarchy."""

    id: str
    display_name: str

    @classmethod
    def from_native(cls, data: dict[str, Any]) -> "RemoteFolder":
        return cls(id=data.get("id", ""), display_name=data.get("displayName", ""))


@dataclass
class LocalMessage:
    """Message header in a local folder."""

    id: Optional[str] = None
    header_message_id: Optional[str] = None
    subject: Optional[str] = None
    body: Optional[str] = None
    date: Optional[datetime] = None
    author: Optional[str] = None
    recipients: list[str] = field(default_factory=list)
    cc_list: list[str] = field(default_factory=list)
    read: Optional[bool] = None
    flagged: Optional[bool] = None
    size: Optional[int] = None
    has_attachments: Optional[bool] = None
    content_type: Optional[str] = None

    @classmethod
    def from_native(cls, data: dict[str, Any]) -> "LocalMessage":
        return cls(
            id=data.get("id"),
            header_message_id=data.get("headerMessageId"),
            subject=data.get("subject"),
            body=data.get("body"),
            date=parse_datetime(data.get("date")),
            author=data.get("author"),
            recipients=list(data.get("recipients") or []),
            cc_list=list(data.get("ccList") or []),
            read=data.get("read"),
            flagged=data.get("flagged"),
            size=data.get("size"),
            has_attachments=data.get("hasAttachments"),
            content_type=data.get("contentType"),
        )

    def to_native(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        pairs = (
            ("id", self.id),
            ("headerMessageId", self.header_message_id),
            ("subject", self.subject),
            ("body", self.body),
            ("author", self.author),
            ("contentType", self.content_type),
        )
        for key, value in pairs:
            if value:
                data[key] = value
        if self.date is not None:
            data["date"] = format_datetime(self.date)
        if self.recipients:
            data["recipients"] = list(self.recipients)
        if self.cc_list:
            data["ccList"] = list(self.cc_list)
        for key, value in (
            ("read", self.read),
            ("flagged", self.flagged),
            ("size", self.size),
            ("hasAttachments", self.has_attachments),
        ):
            if value is not None:
                data[key] = value
        return data


@dataclass
class RemoteMessage:
    """Message in an Exchange folder."""

    id: Optional[str] = None
    subject: Optional[str] = None
    body: Optional[str] = None
    body_type: Optional[str] = None
    date_time_received: Optional[datetime] = None
    from_address: Optional[dict[str, str]] = None
    sender: Optional[dict[str, str]] = None
    to_recipients: list[dict[str, str]] = field(default_factory=list)
    cc_recipients: list[dict[str, str]] = field(default_factory=list)
    is_read: Optional[bool] = None
    size: Optional[int] = None
    has_attachments: Optional[bool] = None

    @classmethod
    def from_native(cls, data: dict[str, Any]) -> "RemoteMessage":
        return cls(
            id=data.get("id"),
            subject=data.get("subject"),
            body=data.get("body"),
            body_type=data.get("bodyType"),
            date_time_received=parse_datetime(data.get("dateTimeReceived")),
            from_address=data.get("from"),
            sender=data.get("sender"),
            to_recipients=list(data.get("toRecipients") or []),
            cc_recipients=list(data.get("ccRecipients") or []),
            is_read=data.get("isRead"),
            size=data.get("size"),
            has_attachments=data.get("hasAttachments"),
        )


def _message_key(
    provider_id: Optional[str], subject: Optional[str], date: Optional[datetime]
) -> str:
    if provider_id and provider_id.strip():
        return provider_id.strip().lower()
    date_ms = to_epoch_ms(date)
    return f"{subject or ''}-{'' if date_ms is None else date_ms}".strip().lower()


def local_message_key(message: LocalMessage) -> str:
    """Matching key: headerMessageId, else "{subject}-{date epoch ms}"."""
    return _message_key(message.header_message_id, message.subject, message.date)


def remote_message_key(message: RemoteMessage) -> str:
    """Matching key: provider id, else "{subject}-{received epoch ms}"."""
    return _message_key(message.id, message.subject, message.date_time_received)


def message_to_local(remote: RemoteMessage) -> LocalMessage:
    """
    Convert a full remote message to a local message.

    The provider id becomes the local headerMessageId so the next sync
    recognises the message as already present.
    """
    return LocalMessage(
        header_message_id=remote.id,
        subject=remote.subject,
        body=remote.body,
        date=remote.date_time_received,
        author=format_address(remote.from_address) or format_address(remote.sender),
        recipients=format_addresses(remote.to_recipients),
        cc_list=format_addresses(remote.cc_recipients),
        read=remote.is_read,
        size=remote.size,
        has_attachments=remote.has_attachments,
        content_type="text/html" if remote.body_type == "HTML" else "text/plain",
    )


def build_raw_message(message: LocalMessage) -> bytes:
    """Render a local message as RFC 5322 bytes for stores that import raw mail."""
    raw = EmailMessage()
    raw["Subject"] = message.subject or ""
    if message.author:
        raw["From"] = message.author
    raw["Date"] = format_rfc2822_date(message.date or utcnow())
    if message.recipients:
        raw["To"] = ", ".join(message.recipients)
    if message.cc_list:
        raw["Cc"] = ", ".join(message.cc_list)
    if message.header_message_id:
        message_id = message.header_message_id
        if not message_id.startswith("<"):
            message_id = f"<{message_id}>"
        raw["Message-ID"] = message_id

    subtype = "html" if message.content_type == "text/html" else "plain"
    raw.set_content(message.body or "", subtype=subtype, charset="utf-8")
    return bytes(raw)


def flag_patch(message: LocalMessage) -> dict[str, Any]:
    """Remote update patch carrying the local read and flag state."""
    patch: dict[str, Any] = {}
    if message.read is not None:
        patch["isRead"] = bool(message.read)
    if message.flagged is not None:
        patch["flagStatus"] = "Flagged" if message.flagged else "NotFlagged"
    return patch


__all__ = [
    "FOLDER_NAME_MAP",
    "PRIORITY_FOLDERS",
    "RemoteFolder",
    "LocalMessage",
    "RemoteMessage",
    "map_folder_name",
    "folder_sort_key",
    "format_address",
    "format_addresses",
    "local_message_key",
    "remote_message_key",
    "message_to_local",
    "build_raw_message",
    "flag_patch",
]
