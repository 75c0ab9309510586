"""
Extraction contexts: the immutable input of one extraction attempt.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional
import re


@dataclass(frozen=True)
class EmailContext:
    """
    A decoded email handed over by the email-content collaborator.

    `sender_address` is the raw From header value, either a bare address
    ("billing@acme.com") or a display-name form ("ACME Billing <billing@acme.com>").
    """
    message_id: str
    sender_address: str
    subject: str
    body_text: str
    received_at: Optional[datetime] = None
    language_hint: Optional[str] = None
    is_trusted_source: bool = False

    @property
    def text(self) -> str:
        """Subject and body as one document."""
        return f"{self.subject or ''}\n\n{self.body_text or ''}"

    @property
    def sender_name(self) -> Optional[str]:
        """Display name of the From header, without quotes."""
        match = re.match(r'^\s*"?([^"<]+?)"?\s*<[^>]+>', self.sender_address or '')
        if match:
            return match.group(1).strip() or None
        return None

    @property
    def sender_email(self) -> str:
        match = re.search(r'<([^>]+)>', self.sender_address or '')
        return (match.group(1) if match else (self.sender_address or '')).strip().lower()

    @property
    def sender_domain(self) -> Optional[str]:
        """Domain of the sender address (e.g., "acme.com")."""
        email = self.sender_email
        if '@' not in email:
            return None
        return email.split('@', 1)[1] or None


@dataclass(frozen=True)
class DocumentContext:
    """
    A document (usually a PDF attachment) to extract from.

    At least one of raw_text and binary_payload must be given; binary
    payloads are converted to text by the PDF-text collaborator before the
    strategies run.
    """
    file_name: str
    raw_text: Optional[str] = None
    binary_payload: Optional[bytes] = None
    message_id: Optional[str] = None
    attachment_id: Optional[str] = None
    language_hint: Optional[str] = None
    is_trusted_source: bool = False

    def __post_init__(self):
        if self.raw_text is None and self.binary_payload is None:
            raise ValueError("DocumentContext needs raw_text or binary_payload")

    @property
    def text(self) -> str:
        return self.raw_text or ''
