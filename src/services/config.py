"""
Relay configuration from environment variables.

Settings are read on every invocation so a changed Lambda configuration
takes effect without redeploying code.
"""

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

logger = logging.getLogger(__name__)

DEFAULT_SUBJECT_TAG_PREFIX = 'Relay for'

_TRUE_VALUES = ('1', 'true', 'yes', 'on')


class ConfigurationError(Exception):
    """Raised when module configuration is invalid or missing."""
    pass


@dataclass(frozen=True)
class RelaySettings:
    """
    Relay configuration.

    Attributes:
        relay_target_email: Private owner address (None disables relaying)
        domain: The protected domain, e.g. "example.com"
        send_as_domain: Whether the owner may send in the name of the domain
        subject_tag_prefix: Token of the relay tag in subjects
        audit_bucket: S3 bucket for audit copies (None disables them)
        redact_spoofed_sender: Hide the sender address in spoof warnings
        ses_configuration_set: Optional SES configuration set for sending
    """
    relay_target_email: Optional[str] = None
    domain: Optional[str] = None
    send_as_domain: bool = False
    subject_tag_prefix: str = DEFAULT_SUBJECT_TAG_PREFIX
    audit_bucket: Optional[str] = None
    redact_spoofed_sender: bool = False
    ses_configuration_set: Optional[str] = None

    @property
    def relay_enabled(self) -> bool:
        return bool(self.relay_target_email)

    @property
    def audit_enabled(self) -> bool:
        return bool(self.audit_bucket)


def _read_bool(environ: Mapping[str, str], name: str) -> bool:
    return environ.get(name, '').strip().lower() in _TRUE_VALUES


def _read_str(environ: Mapping[str, str], name: str) -> Optional[str]:
    value = environ.get(name, '').strip()
    return value or None


def load_settings(environ: Optional[Mapping[str, str]] = None) -> RelaySettings:
    """
    Read and validate relay settings.

    Args:
        environ: Variables to read (defaults to os.environ)

    Returns:
        RelaySettings: The validated settings

    Raises:
        ConfigurationError: If required settings are missing
    """
    if environ is None:
        environ = os.environ

    settings = RelaySettings(
        relay_target_email=_read_str(environ, 'RELAY_TARGET_EMAIL'),
        domain=_read_str(environ, 'DOMAIN'),
        send_as_domain=_read_bool(environ, 'SEND_AS_DOMAIN'),
        subject_tag_prefix=_read_str(environ, 'SUBJECT_TAG_PREFIX') or DEFAULT_SUBJECT_TAG_PREFIX,
        audit_bucket=_read_str(environ, 'AUDIT_S3_BUCKET'),
        redact_spoofed_sender=_read_bool(environ, 'REDACT_SPOOFED_SENDER'),
        ses_configuration_set=_read_str(environ, 'SES_CONFIGURATION_SET'),
    )

    if not settings.relay_enabled and not settings.audit_enabled:
        raise ConfigurationError(
            "Neither RELAY_TARGET_EMAIL nor AUDIT_S3_BUCKET is set. "
            "Please configure at least one of them in your SAM template or Lambda environment."
        )

    if settings.relay_enabled and not settings.domain:
        raise ConfigurationError("DOMAIN must be set as well when RELAY_TARGET_EMAIL is used.")

    logger.debug(
        f"Settings loaded: relay={settings.relay_enabled}, audit={settings.audit_enabled}, "
        f"send_as_domain={settings.send_as_domain}"
    )
    return settings
