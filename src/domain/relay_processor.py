"""
Email relay pipeline.

This module handles the end-to-end processing of one received email:
1. Store an audit copy in S3 (if configured, best effort)
2. Decide the relay outcome (RelayDecisionEngine)
3. Log the outcome (spoofing and sanitizing problems at CRITICAL)
4. Send the one outbound message via SES

Dispatch errors are NOT caught here: the webhook must fail so the inbound
gateway retries the delivery.
"""

import logging
from datetime import datetime
from typing import Optional

from .models import InboundMessage, OutcomeKind, ProcessingResult, RelayOutcome
from .relay_engine import REASON_NO_SANITIZER, RelayDecisionEngine
from .sanitizers import DEFAULT_SANITIZERS
from .subject_parser import SubjectParser
from services import s3 as s3_service
from services import ses as ses_service
from services.config import RelaySettings

logger = logging.getLogger(__name__)


class RelayProcessor:
    """
    Handles end-to-end relay processing.

    Keeps no state between messages; settings are passed per call.
    """

    def __init__(self, sanitizers=DEFAULT_SANITIZERS):
        """
        Initialize relay processor.

        Args:
            sanitizers: Metadata sanitizers available to the engine
        """
        self.sanitizers = tuple(sanitizers)

    def process(
        self,
        message: InboundMessage,
        settings: RelaySettings,
        received_at: Optional[datetime] = None
    ) -> ProcessingResult:
        """
        Process a received email.

        Args:
            message: The decoded email
            settings: Validated relay settings
            received_at: Time of receipt (for the audit key)

        Returns:
            ProcessingResult with the outcome and dispatch id

        Raises:
            DispatchError: If SES rejects the outbound message
        """
        logger.info(
            f"Processing email: from={message.from_address}, "
            f"subject={message.subject}, attachments={len(message.attachments)}"
        )

        audit_key = self._persist_audit_copy(message, settings, received_at)

        if not settings.relay_enabled:
            logger.info("Relay not configured (RELAY_TARGET_EMAIL unset), only storing audit copy")
            return ProcessingResult(success=True, audit_key=audit_key)

        engine = RelayDecisionEngine(
            subject_parser=SubjectParser(settings.subject_tag_prefix),
            sanitizers=self.sanitizers,
            redact_spoofed_sender=settings.redact_spoofed_sender
        )
        outcome = engine.decide(
            message,
            relay_target_email=settings.relay_target_email,
            domain=settings.domain,
            send_as_domain=settings.send_as_domain
        )
        self._log_outcome(message, outcome)

        dispatch_id = ses_service.send_email(
            outcome.message,
            configuration_set=settings.ses_configuration_set
        )

        return ProcessingResult(
            success=True,
            outcome=outcome,
            dispatch_id=dispatch_id,
            audit_key=audit_key
        )

    def _persist_audit_copy(
        self,
        message: InboundMessage,
        settings: RelaySettings,
        received_at: Optional[datetime]
    ) -> Optional[str]:
        """
        Store an audit copy of message in S3.

        Note:
            - Skips if AUDIT_S3_BUCKET is not configured
            - Upload failures are logged but don't stop processing
        """
        if not settings.audit_enabled:
            logger.info("Audit copies not configured, skipping")
            return None

        key = s3_service.build_audit_key(message, received_at)
        stored = s3_service.persist_audit_copy(
            settings.audit_bucket,
            key,
            s3_service.build_audit_payload(message)
        )
        return key if stored else None

    def _log_outcome(self, message: InboundMessage, outcome: RelayOutcome) -> None:
        """Log the relay decision."""
        if not outcome.is_warning:
            target = 'external recipient' if outcome.sends_externally else 'owner'
            logger.info(
                f"Relaying ({outcome.kind}) to {target}: {outcome.message.from_address} -> "
                f"{outcome.message.to_address}, subject={outcome.message.subject}"
            )
            return

        sender = message.from_address.email
        if outcome.kind == OutcomeKind.WARN_SPOOFED:
            logger.critical(
                f"Unauthorized sender {sender} tried to send email in the name of the domain "
                f"via subject: {message.subject}. Auth result was {outcome.auth_result} "
                f"(SPF: {message.spf}, DKIM: {message.dkim})"
            )
        elif outcome.kind == OutcomeKind.WARN_SANITIZE_FAILED:
            if outcome.reason == REASON_NO_SANITIZER:
                logger.critical(
                    f"Unable to sanitize content from email. Could not find matching sanitizer "
                    f"for {outcome.message.to_address}"
                )
            else:
                logger.critical(
                    "Unable to sanitize content from email. Could not find block with private "
                    "information. Assuming the format changed and did not send the email"
                )
        else:
            logger.warning(f"Sending as domain is disabled, warning owner about: {message.subject}")
