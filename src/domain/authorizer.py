"""
Authorization of senders that want to send in the name of the domain.

Sender addresses are easily faked, so besides the identity check the SPF and
DKIM verdicts are required to pass. The inbound gateway already verified
both; they arrive here as plain strings and are only compared.
"""

from typing import Optional

from .models import AuthResult


def _expected_dkim(from_email: str) -> str:
    at = from_email.find('@')
    domain = from_email[at:] if at >= 0 else ''
    return f"{{{domain} : pass}}"


def authorize(
    from_email: str,
    relay_target_email: str,
    spf: Optional[str],
    dkim: Optional[str]
) -> AuthResult:
    """
    Check whether from_email may send as the domain.

    Args:
        from_email: Sender of the inbound message
        relay_target_email: The configured owner address
        spf: SPF verdict from the gateway, must be "pass"
        dkim: DKIM verdicts from the gateway, must be "{@<sender domain> : pass}"

    Returns:
        AuthResult.AUTHORIZED, or the first check that failed
    """
    if not from_email or from_email.casefold() != (relay_target_email or '').casefold():
        return AuthResult.INVALID_SENDER

    if (spf or '').casefold() != 'pass':
        return AuthResult.SPF_FAIL

    if (dkim or '').casefold() != _expected_dkim(from_email).casefold():
        return AuthResult.DKIM_FAIL

    return AuthResult.AUTHORIZED
