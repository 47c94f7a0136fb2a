"""
Relay decision engine - core business logic.

Email can be relayed in two modes:
1. An external user sends email to the domain -> it is forwarded from the
   domain address to the owner with subject "Relay for <external user>: ..."
2. The owner sends email to the domain with subject "Relay for <email>: ..."
   -> it is sent from the domain address to <email>, in the name of the domain

Everything else (disabled domain-sending, spoofed owner, body that could not
be sanitized) ends in a warning to the owner. The engine never sends to the
external party unless all checks pass.

The engine is pure: it only builds the outbound message. Sending it, logging
and audit copies are up to the caller.
"""

import html
from typing import Iterable, Optional

from .authorizer import authorize
from .models import (
    AuthResult,
    InboundMessage,
    OutboundMessage,
    OutcomeKind,
    RelayOutcome,
    SubjectTag,
)
from .sanitizers import DEFAULT_SANITIZERS, MetadataSanitizer, find_sanitizer
from .subject_parser import SubjectParser


REASON_NO_SANITIZER = 'no_sanitizer'
REASON_FORMAT_DRIFT = 'format_drift'

REDACTED_SENDER = '[redacted]'


def normalize_domain(domain: str) -> str:
    """Prefix domain with "@" so "example.com" does not match "@foo.example.com"."""
    domain = (domain or '').strip()
    if not domain.startswith('@'):
        domain = '@' + domain
    return domain


def select_domain_recipient(message: InboundMessage, domain: str) -> str:
    """
    Find the domain address the message was sent to.

    The sender may CC any number of others and put the domain address
    anywhere, so match by domain instead of position. Falls back to
    "unknown@domain" when the domain was only BCC'ed.

    Args:
        message: Inbound message
        domain: Normalized domain ("@example.com")

    Returns:
        str: Domain address to send from
    """
    for email in message.recipients:
        if email.casefold().endswith(domain.casefold()):
            return email
    return 'unknown' + domain


class RelayDecisionEngine:
    """
    Decides how a single inbound message is relayed.

    Holds only immutable collaborators, so one instance can serve any number
    of concurrent requests.
    """

    def __init__(
        self,
        subject_parser: Optional[SubjectParser] = None,
        sanitizers: Iterable[MetadataSanitizer] = DEFAULT_SANITIZERS,
        redact_spoofed_sender: bool = False
    ):
        """
        Initialize the engine.

        Args:
            subject_parser: Parser for the relay tag (default token "Relay for")
            sanitizers: Available metadata sanitizers, first match wins
            redact_spoofed_sender: Hide the sender address in spoof warnings
        """
        self.subject_parser = subject_parser or SubjectParser()
        self.sanitizers = tuple(sanitizers)
        self.redact_spoofed_sender = redact_spoofed_sender

    def decide(
        self,
        message: InboundMessage,
        relay_target_email: str,
        domain: str,
        send_as_domain: bool
    ) -> RelayOutcome:
        """
        Decide the outcome for message.

        Args:
            message: Inbound message
            relay_target_email: The owner address; only it may send as the domain
            domain: The protected domain, with or without leading "@"
            send_as_domain: Whether sending in the name of the domain is enabled

        Returns:
            RelayOutcome with exactly one outbound message
        """
        domain = normalize_domain(domain)
        sender = message.from_address.email
        to = select_domain_recipient(message, domain)
        tag = self.subject_parser.parse(message.subject)

        if not tag.has_relay_target:
            # regular email by external user -> relay to owner
            return RelayOutcome(
                kind=OutcomeKind.FORWARD_TO_OWNER,
                message=OutboundMessage(
                    from_address=to,
                    to_address=relay_target_email,
                    subject=f"{tag.prefix}{self.subject_parser.format_tag(sender)}{tag.subject}",
                    body=message.content,
                    attachments=list(message.attachments),
                    is_html=message.has_html,
                ),
            )

        if not send_as_domain:
            return self._warn(
                OutcomeKind.WARN_DISABLED, message, to, relay_target_email, '[WARNING]',
                "Sending as domain is disabled! Set 'SEND_AS_DOMAIN=true' to enable it. "
                "Original message:<br /><br />",
            )

        # external senders must not be able to spoof the owner and send as the domain
        auth = authorize(sender, relay_target_email, message.spf, message.dkim)
        if auth != AuthResult.AUTHORIZED:
            shown_sender = REDACTED_SENDER if self.redact_spoofed_sender else sender
            return self._warn(
                OutcomeKind.WARN_SPOOFED, message, to, relay_target_email, '[SPOOFWARNING]',
                "Someone tried to send an email in the name of the domain by using the "
                f"'{html.escape(self.subject_parser.format_tag(tag.relay_target).strip())}' subject. "
                f"Their email was: {html.escape(shown_sender)}. <br />"
                f"Auth result was {auth} (SPF: {html.escape(str(message.spf))}, "
                f"DKIM: {html.escape(str(message.dkim))}). "
                "Original message below.<br /><br />",
                auth_result=auth,
            )

        sanitizer = find_sanitizer(relay_target_email, self.sanitizers)
        if sanitizer is None:
            return self._warn(
                OutcomeKind.WARN_SANITIZE_FAILED, message, to, relay_target_email, '[SANITIZE]',
                "Failed to sanitize the email content (and did not send it to the target). <br />"
                f"Could not find a sanitizer for domain {relay_target_email}. "
                "Original content:<br /><br />",
                auth_result=auth,
                reason=REASON_NO_SANITIZER,
            )

        content, ok = self._sanitize(sanitizer, message, tag, relay_target_email, to)
        if not ok:
            kind = 'html' if message.has_html else 'plain text'
            return self._warn(
                OutcomeKind.WARN_SANITIZE_FAILED, message, to, relay_target_email, '[SANITIZE]',
                f"Failed to sanitize the email ({kind}) content (and did not send it to the target). <br />"
                "Could not find the section with private information. Assuming the format changed. "
                "Original content below.<br /><br />",
                auth_result=auth,
                reason=REASON_FORMAT_DRIFT,
            )

        return RelayOutcome(
            kind=OutcomeKind.SEND_AS_DOMAIN,
            message=OutboundMessage(
                from_address=to,
                to_address=tag.relay_target,
                subject=tag.prefix + tag.subject,
                body=content,
                attachments=list(message.attachments),
                is_html=message.has_html,
            ),
            auth_result=auth,
        )

    def _sanitize(
        self,
        sanitizer: MetadataSanitizer,
        message: InboundMessage,
        tag: SubjectTag,
        relay_target_email: str,
        to: str
    ):
        # prefer html over plain text
        token = self.subject_parser.token
        if message.has_html:
            return sanitizer.try_sanitize_html(message.html, tag, relay_target_email, to, token)
        return sanitizer.try_sanitize_plain_text(message.text or '', tag, relay_target_email, to, token)

    def _warn(
        self,
        kind: OutcomeKind,
        message: InboundMessage,
        to: str,
        relay_target_email: str,
        marker: str,
        explanation: str,
        auth_result: Optional[AuthResult] = None,
        reason: Optional[str] = None
    ) -> RelayOutcome:
        """Build a warning to the owner quoting the original message."""
        return RelayOutcome(
            kind=kind,
            message=OutboundMessage(
                from_address=to,
                to_address=relay_target_email,
                subject=f"{marker} {message.subject}",
                body=explanation + message.content,
                attachments=list(message.attachments),
                is_html=True,
            ),
            auth_result=auth_result,
            reason=reason,
        )
