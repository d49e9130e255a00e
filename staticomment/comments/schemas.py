"""Schema definitions for comment submissions and persisted records.

A Submission lives only for the request that carried it. A CommentRecord
is what ends up in the repository, one YAML file per record.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

# RFC 3339 at second precision, the format static site generators sort on
DATE_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


@dataclass
class Submission:
    """A validated comment form post.

    Attributes:
        name: Display name of the commenter.
        body: Comment text.
        slug: Identifier of the page being commented on.
        redirect_url: Page to send the browser back to (already origin-checked).
        email: Optional contact address, stored but never displayed by us.
        reply_to: Optional identifier of the comment being replied to.
        origin: Origin the request came from.
        client_ip: Remote address, port stripped.
        received_at: When the request arrived.
    """

    name: str
    body: str
    slug: str
    redirect_url: str
    email: str = ""
    reply_to: str = ""
    origin: str = ""
    client_ip: str = ""
    received_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )


@dataclass(frozen=True)
class CommentRecord:
    """A comment as persisted in the repository. Immutable once written."""

    name: str
    body: str
    date: str
    slug: str
    email: str = ""
    reply_to: str = ""

    @classmethod
    def from_submission(cls, submission: Submission) -> "CommentRecord":
        created = submission.received_at.astimezone(timezone.utc)
        return cls(
            name=submission.name,
            body=submission.body,
            date=created.strftime(DATE_FORMAT),
            slug=submission.slug,
            email=submission.email,
            reply_to=submission.reply_to,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serializable mapping in file order; empty optional fields are omitted."""
        data: dict[str, Any] = {"name": self.name}
        if self.email:
            data["email"] = self.email
        data["body"] = self.body
        data["date"] = self.date
        data["slug"] = self.slug
        if self.reply_to:
            data["reply_to"] = self.reply_to
        return data
