"""
Parsing of raw address headers as delivered by the inbound gateway.

Supported formats (may be mixed in one list):
    "First, Last" <foo@example.com>
    Name <foo@example.com>
    foo@example.com
"""

import logging
from typing import List, Optional

from .models import EmailAddress

logger = logging.getLogger(__name__)


def parse_one(raw: Optional[str]) -> Optional[EmailAddress]:
    """
    Parse a single address of the format: "name" <foo@example.com>.

    Plain addresses without a display name are supported as well.

    Args:
        raw: Raw address text

    Returns:
        EmailAddress, or None for empty input
    """
    if not raw or not raw.strip():
        return None

    start = raw.rfind('<')
    end = raw.find('>', start + 1) if start >= 0 else -1

    if start >= 0 and end > start:
        name = raw[:start].replace('"', '').strip()
        email = raw[start + 1:end].strip()
    else:
        name = ''
        email = raw.strip()

    if not email:
        return None
    return EmailAddress(name=name, email=email)


def parse_many(raw: Optional[str]) -> List[EmailAddress]:
    """
    Parse a comma separated list of addresses.

    Can't just split on "," since display names may contain it:
        "first, last" <foo@example.com>, "bar" <bar@example.com>

    Args:
        raw: Raw address list

    Returns:
        Parsed addresses in original order; unparsable entries are dropped
    """
    if not raw:
        return []

    fragments = [f for f in raw.split(',') if f]

    # A valid name always has two quotes; a fragment with exactly one
    # was split inside a name and runs until the next such fragment.
    repaired = []
    open_index = None
    for fragment in fragments:
        if fragment.count('"') == 1:
            if open_index is None:
                open_index = len(repaired)
                repaired.append(fragment)
            else:
                repaired[open_index] = ','.join([repaired[open_index]] + repaired[open_index + 1:] + [fragment])
                del repaired[open_index + 1:]
                open_index = None
        else:
            repaired.append(fragment)

    if open_index is not None:
        logger.warning(f"Unterminated quote in address list: {raw!r}")

    addresses = []
    for fragment in repaired:
        address = parse_one(fragment)
        if address is not None:
            addresses.append(address)
    return addresses
