"""
Removal of private metadata from quoted reply chains.

When the owner replies from the private mailbox, most mail clients copy the
header of the original message into the body:

    ___________________________________________
    From: me@domain.com <me@domain.com>
    Sent: Tuesday, September 3, 2019 11:19:42 PM
    To: me@live.com <me@live.com>
    Subject: Relay for ext@user.foo: Test

The external receiver must neither see the private address (me@live.com) nor
the relay tag. The block is rewritten to what the receiver expects:

    From: ext@user.foo <ext@user.foo>
    Sent: Tuesday, September 3, 2019 11:19:42 PM
    To: me@domain.com <me@domain.com>
    Subject: Test

The block layout differs per mail client, so there is one sanitizer per
provider, picked by the domain of the private address.
"""

import functools
import logging
import re
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Optional, Pattern, Tuple

from .models import SubjectTag
from .subject_parser import DEFAULT_TAG_TOKEN

logger = logging.getLogger(__name__)

HEADER_KEYWORDS = ('From:', 'Sent:', 'To:', 'Subject:')

# real line breaks, or the literal escapes some gateways leave in HTML bodies
_HTML_NEWLINE = r'(?:\r?\n|\\r\\n|\\n)'

SanitizeFunc = Callable[[str, SubjectTag, str, str, str], Tuple[str, bool]]


@dataclass(frozen=True)
class MetadataSanitizer:
    """
    Sanitizer for the bodies produced by one mail provider.

    Attributes:
        name: Provider name (for logging)
        domains: Address suffixes of the provider, e.g. "@outlook.com"
        sanitize_plain_text: Rewrites a plain text body, returns (content, ok)
        sanitize_html: Rewrites an HTML body, returns (content, ok)
    """
    name: str
    domains: Tuple[str, ...]
    sanitize_plain_text: SanitizeFunc
    sanitize_html: SanitizeFunc

    def can_sanitize(self, email: str) -> bool:
        """Check if email belongs to this provider."""
        email = (email or '').casefold()
        return any(email.endswith(d.casefold()) for d in self.domains)

    def try_sanitize_plain_text(
        self,
        content: str,
        tag: SubjectTag,
        relay_target_email: str,
        to: str,
        token: str = DEFAULT_TAG_TOKEN
    ) -> Tuple[str, bool]:
        return self.sanitize_plain_text(content, tag, relay_target_email, to, token)

    def try_sanitize_html(
        self,
        content: str,
        tag: SubjectTag,
        relay_target_email: str,
        to: str,
        token: str = DEFAULT_TAG_TOKEN
    ) -> Tuple[str, bool]:
        return self.sanitize_html(content, tag, relay_target_email, to, token)


def has_header_block(content: str) -> bool:
    """Check if content contains all keywords of a quoted header block."""
    return all(keyword in content for keyword in HEADER_KEYWORDS)


def _rewrite(content: str, match, replacements: Dict[str, str]) -> str:
    # descending offsets keep the earlier spans valid
    for group in sorted(replacements, key=match.start, reverse=True):
        start, end = match.span(group)
        content = content[:start] + replacements[group] + content[end:]
    return content


def _apply(
    pattern: Pattern,
    content: str,
    replacements: Dict[str, str],
    relay_target_email: str
) -> Tuple[str, bool]:
    """
    Rewrite the header block matched by pattern.

    Returns:
        (rewritten content, True) on match,
        (content, False) if a header block exists but did not match or the
        private address is still present after rewriting (e.g. in a link),
        (content, True) if there is no header block at all (first message)
    """
    match = pattern.search(content)
    if not match:
        if has_header_block(content):
            return content, False
        return content, True

    rewritten = _rewrite(content, match, replacements)
    if relay_target_email and relay_target_email.casefold() in rewritten.casefold():
        logger.warning("Private address still present after rewriting the header block")
        return content, False
    return rewritten, True


# ============================================================================
# Outlook web
# ============================================================================

@functools.lru_cache(maxsize=128)
def _outlook_plain_text_pattern(
    to: str,
    relay_target_email: str,
    prefix: str,
    relay_target: str,
    token: str
) -> Pattern:
    to, private = re.escape(to), re.escape(relay_target_email)
    return re.compile(
        rf"From:.*?(?P<from>{to} <{to}>|{to})\r?\n"
        rf"Sent: .*\r?\n"
        rf"To: (?P<to>{private} <{private}>|{private})\r?\n"
        rf"Subject: (?:{re.escape(prefix)})?"
        rf"(?P<subject>{re.escape(token)}\s?{re.escape(relay_target)}:\s)",
        re.MULTILINE | re.IGNORECASE
    )


@functools.lru_cache(maxsize=128)
def _outlook_html_pattern(
    to: str,
    relay_target_email: str,
    prefix: str,
    relay_target: str,
    token: str
) -> Pattern:
    # based on this block:
    # <div id="divRplyFwdMsg" dir="ltr"><font face="Calibri, sans-serif" style="font-size:11pt" color="#000000"><b>From:</b> me@mydomain.com &lt;me@mydomain.com&gt;<br>
    # <b>Sent:</b> 01 September 2019 10:10<br>
    # <b>To:</b> me@myprivateemail.com &lt;me@myprivateemail.com&gt;<br>
    # <b>Subject:</b> Relay for ext@user.foo: Subject1</font>
    to, private = re.escape(to), re.escape(relay_target_email)
    return re.compile(
        rf"From:.*?(?P<from>{to} &lt;{to}&gt;|{to}).*?{_HTML_NEWLINE}"
        rf".*?Sent:.*?{_HTML_NEWLINE}"
        rf".*?To:.*?(?P<to>{private} &lt;{private}&gt;|{private}).*?{_HTML_NEWLINE}"
        rf".*?Subject:.*?(?:{re.escape(prefix)})?"
        rf"(?P<subject>{re.escape(token)}\s?{re.escape(relay_target)}:\s*)",
        re.MULTILINE | re.IGNORECASE
    )


def outlook_sanitize_plain_text(
    content: str,
    tag: SubjectTag,
    relay_target_email: str,
    to: str,
    token: str = DEFAULT_TAG_TOKEN
) -> Tuple[str, bool]:
    """Sanitize a plain text reply written in Outlook web."""
    pattern = _outlook_plain_text_pattern(to, relay_target_email, tag.prefix, tag.relay_target, token)
    return _apply(pattern, content, {
        'from': f"{tag.relay_target} <{tag.relay_target}>",
        'to': f"{to} <{to}>",
        'subject': '',
    }, relay_target_email)


def outlook_sanitize_html(
    content: str,
    tag: SubjectTag,
    relay_target_email: str,
    to: str,
    token: str = DEFAULT_TAG_TOKEN
) -> Tuple[str, bool]:
    """Sanitize an HTML reply written in Outlook web."""
    pattern = _outlook_html_pattern(to, relay_target_email, tag.prefix, tag.relay_target, token)
    return _apply(pattern, content, {
        'from': f"{tag.relay_target} &lt;{tag.relay_target}&gt;",
        'to': f"{to} &lt;{to}&gt;",
        'subject': '',
    }, relay_target_email)


OUTLOOK_WEB = MetadataSanitizer(
    name='outlook-web',
    domains=('@live.com', '@outlook.com', '@hotmail.com'),
    sanitize_plain_text=outlook_sanitize_plain_text,
    sanitize_html=outlook_sanitize_html,
)

DEFAULT_SANITIZERS: Tuple[MetadataSanitizer, ...] = (OUTLOOK_WEB,)


def find_sanitizer(
    email: str,
    sanitizers: Iterable[MetadataSanitizer] = DEFAULT_SANITIZERS
) -> Optional[MetadataSanitizer]:
    """
    Pick the first sanitizer that handles the provider of email.

    Returns:
        MetadataSanitizer, or None if no provider matches
    """
    for sanitizer in sanitizers:
        if sanitizer.can_sanitize(email):
            logger.debug(f"Using sanitizer {sanitizer.name} for {email}")
            return sanitizer
    return None
