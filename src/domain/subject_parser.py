"""
Parsing of the relay tag in subject lines.

A subject such as "RE: Relay for ext@user.foo: Inquiry" carries the address
the owner wants to answer in the name of the domain. Mail clients keep
prepending "RE:"/"FWD:" markers, which end up in the prefix.
"""

import re
from typing import Optional

from .models import SubjectTag

DEFAULT_TAG_TOKEN = 'Relay for'


class SubjectParser:
    """
    Splits subject lines around the relay tag.

    Attributes:
        token: Text introducing the tag (defaults to "Relay for")
    """

    def __init__(self, token: Optional[str] = None):
        self.token = token or DEFAULT_TAG_TOKEN
        # may be preceded by "RE: FWD: .." markers
        self._pattern = re.compile(rf'(.*?){re.escape(self.token)} ([^:\s]*?):(.*)')

    def format_tag(self, target: str) -> str:
        """Build the tag for target, e.g. "Relay for ext@user.foo: "."""
        return f"{self.token} {target}: "

    def parse(self, subject: Optional[str]) -> SubjectTag:
        """
        Parse a subject line.

        Nested tags collapse into the first one: "Relay for a: Relay for b: X"
        yields relay_target "a" and subject "X".

        Args:
            subject: Raw subject line

        Returns:
            SubjectTag; relay_target is empty if no tag was found
        """
        subject = subject or ''
        match = self._pattern.search(subject)
        if not match or not match.group(2):
            return SubjectTag(prefix='', relay_target='', subject=subject)

        prefix, relay_target = match.group(1), match.group(2)
        return SubjectTag(
            prefix=prefix,
            relay_target=relay_target,
            subject=self._strip_tags(match.group(3).strip()),
        )

    def _strip_tags(self, remainder: str) -> str:
        # remove any further tags, keeping the text around them; joined text
        # can form a new tag, so rescan until none is left
        match = self._pattern.search(remainder)
        while match:
            remainder = match.group(1) + match.group(3).strip()
            match = self._pattern.search(remainder)
        return remainder
