"""
Data models for the email relay domain.

These type-safe data structures define clear contracts between components.
All of them are built fresh per request and never shared between requests.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Dict, Any


@dataclass(frozen=True)
class EmailAddress:
    """
    Parsed email address.

    Attributes:
        name: Display name (may be empty)
        email: The address itself, identifies the mailbox
    """
    name: str
    email: str

    def __str__(self) -> str:
        if self.name:
            return f'"{self.name}" <{self.email}>'
        return self.email


@dataclass(frozen=True)
class Attachment:
    """
    Email attachment as delivered by the inbound gateway.

    Attributes:
        file_name: Original filename
        content_type: MIME type (e.g., "image/png", "application/pdf")
        base64_data: File content, base64 encoded
        content_id: Content-ID for inline parts (None for regular attachments)
    """
    file_name: str
    content_type: str
    base64_data: str
    content_id: Optional[str] = None

    @property
    def is_inline(self) -> bool:
        """Check if attachment is referenced from the HTML body."""
        return bool(self.content_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'fileName': self.file_name,
            'contentType': self.content_type,
            'contentId': self.content_id,
            'size': len(self.base64_data),
        }


@dataclass(frozen=True)
class InboundMessage:
    """
    Email received by the domain, as decoded by the inbound parser.

    Attributes:
        from_address: Sender
        to: Recipients in the To header
        cc: Recipients in the Cc header
        subject: Subject line
        html: HTML body (None if not present)
        text: Plain text body (None if not present)
        attachments: Attachments in gateway order
        spf: SPF verdict reported by the gateway (e.g. "pass")
        dkim: DKIM verdicts reported by the gateway (e.g. "{@example.com : pass}")
        sender_ip: Connecting IP reported by the gateway
        spam_score: Spam score reported by the gateway
        spam_report: Spam report reported by the gateway
        charsets: Per-field character sets reported by the gateway
    """
    from_address: EmailAddress
    subject: str = ''
    to: List[EmailAddress] = field(default_factory=list)
    cc: List[EmailAddress] = field(default_factory=list)
    html: Optional[str] = None
    text: Optional[str] = None
    attachments: List[Attachment] = field(default_factory=list)
    spf: Optional[str] = None
    dkim: Optional[str] = None
    sender_ip: Optional[str] = None
    spam_score: Optional[str] = None
    spam_report: Optional[str] = None
    charsets: Dict[str, str] = field(default_factory=dict)

    @property
    def content(self) -> str:
        """
        Get best available body content.

        Priority: html > text > empty string
        """
        return self.html or self.text or ''

    @property
    def has_html(self) -> bool:
        return bool(self.html)

    @property
    def recipients(self) -> List[str]:
        """To and Cc addresses, de-duplicated, in header order."""
        seen = []
        for address in list(self.to) + list(self.cc):
            if address.email not in seen:
                seen.append(address.email)
        return seen

    def to_dict(self) -> Dict[str, Any]:
        """Serializable representation (used for audit copies)."""
        return {
            'from': {'name': self.from_address.name, 'email': self.from_address.email},
            'to': [{'name': a.name, 'email': a.email} for a in self.to],
            'cc': [{'name': a.name, 'email': a.email} for a in self.cc],
            'subject': self.subject,
            'html': self.html,
            'text': self.text,
            'attachments': [a.to_dict() for a in self.attachments],
            'spf': self.spf,
            'dkim': self.dkim,
            'senderIp': self.sender_ip,
            'spamScore': self.spam_score,
            'spamReport': self.spam_report,
            'charsets': dict(self.charsets),
        }


@dataclass(frozen=True)
class SubjectTag:
    """
    Subject line split around a "Relay for <email>:" tag.

    Attributes:
        prefix: Leading reply/forward markers before the tag (e.g. "RE: FWD: ")
        relay_target: Address from the tag, empty if no tag was present
        subject: The actual subject with every tag removed
    """
    prefix: str = ''
    relay_target: str = ''
    subject: str = ''

    @property
    def has_relay_target(self) -> bool:
        return bool(self.relay_target)


class AuthResult(Enum):
    """Outcome of checking a sender that wants to send as the domain."""
    AUTHORIZED = 'Authorized'
    INVALID_SENDER = 'InvalidSender'
    SPF_FAIL = 'SpfFail'
    DKIM_FAIL = 'DkimFail'

    def __str__(self) -> str:
        return self.value


class OutcomeKind(Enum):
    """The five mutually exclusive relay outcomes."""
    FORWARD_TO_OWNER = 'ForwardToOwner'
    SEND_AS_DOMAIN = 'SendAsDomain'
    WARN_DISABLED = 'WarnDisabled'
    WARN_SPOOFED = 'WarnSpoofed'
    WARN_SANITIZE_FAILED = 'WarnSanitizeFailed'

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class OutboundMessage:
    """
    The single message produced for an inbound message.

    Attributes:
        from_address: Sender address (always a domain address)
        to_address: The one recipient
        subject: Subject line
        body: HTML or plain text body
        attachments: Attachments carried over from the inbound message
        is_html: Whether body is HTML
    """
    from_address: str
    to_address: str
    subject: str
    body: str
    attachments: List[Attachment] = field(default_factory=list)
    is_html: bool = True


@dataclass(frozen=True)
class RelayOutcome:
    """
    Result of the relay decision.

    Attributes:
        kind: Which of the five outcomes was chosen
        message: The outbound message to dispatch
        auth_result: Authorization result (set once authorization ran)
        reason: Why sanitizing failed ("no_sanitizer" or "format_drift")
    """
    kind: OutcomeKind
    message: OutboundMessage
    auth_result: Optional[AuthResult] = None
    reason: Optional[str] = None

    @property
    def is_warning(self) -> bool:
        return self.kind in (
            OutcomeKind.WARN_DISABLED,
            OutcomeKind.WARN_SPOOFED,
            OutcomeKind.WARN_SANITIZE_FAILED,
        )

    @property
    def sends_externally(self) -> bool:
        """Only domain-sending reaches someone other than the owner."""
        return self.kind == OutcomeKind.SEND_AS_DOMAIN

    def __repr__(self) -> str:
        """Human-readable representation for logging."""
        details = f"kind={self.kind}, to={self.message.to_address}"
        if self.auth_result is not None:
            details += f", auth={self.auth_result}"
        if self.reason:
            details += f", reason={self.reason}"
        return f"RelayOutcome({details})"


@dataclass
class ProcessingResult:
    """
    Result of processing one webhook request.

    This explicit result type makes success/failure handling clear
    and prevents exceptions from being used for control flow.

    Attributes:
        success: Whether processing succeeded
        outcome: Relay outcome (None if relaying is not configured)
        dispatch_id: Message id returned by the mail dispatcher
        audit_key: Key of the audit copy (None if not persisted)
        error_message: Error description (if processing failed)
    """
    success: bool
    outcome: Optional[RelayOutcome] = None
    dispatch_id: Optional[str] = None
    audit_key: Optional[str] = None
    error_message: Optional[str] = None

    def __repr__(self) -> str:
        """Human-readable representation for logging."""
        if self.success:
            return f"ProcessingResult(success=True, outcome={self.outcome!r})"
        else:
            return f"ProcessingResult(success=False, error={self.error_message})"
