"""Data types shared across the Gmail retrieval modules."""

from dataclasses import dataclass, field
from typing import Any

DEFAULT_MAX_RESULTS = 10
MAX_RESULTS_CAP = 100


@dataclass(frozen=True)
class EmailFilter:
    """Caller-supplied criteria for one mailbox read.

    Only ``sender_email`` and ``only_unread`` reach the search query;
    ``max_results`` caps the search and ``include_body`` decides whether the
    MIME body is fetched and decoded at all.
    """

    sender_email: str | None = None
    only_unread: bool = False
    max_results: int = DEFAULT_MAX_RESULTS
    include_body: bool = False


@dataclass(frozen=True)
class EmailMessage:
    """Read-only projection of one Gmail message, rebuilt on every fetch."""

    id: str
    thread_id: str
    subject: str
    sender: str
    date: str
    snippet: str
    to: list[str] = field(default_factory=list)
    body: str = ""
    is_unread: bool = False
    labels: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Serialise with the camelCase keys tool callers expect."""
        return {
            "id": self.id,
            "threadId": self.thread_id,
            "subject": self.subject,
            "from": self.sender,
            "to": list(self.to),
            "date": self.date,
            "snippet": self.snippet,
            "body": self.body,
            "isUnread": self.is_unread,
            "labels": list(self.labels),
        }


@dataclass(frozen=True)
class MailboxProfile:
    email_address: str
    messages_total: int = 0
    threads_total: int = 0
