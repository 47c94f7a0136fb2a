"""
Parsing of inbound email webhooks.

The inbound mail gateway (SendGrid Inbound Parse) POSTs every received email
as multipart/form-data. API Gateway / Lambda function URLs hand the body to
the function as a (usually base64 encoded) string.

Form fields used:
    from, to, cc, subject, html, text, SPF, dkim, sender_ip, spam_score,
    spam_report, charsets (JSON), attachment-info (JSON), attachment1..N (files)
"""

import base64
import binascii
import json
import logging
from email import policy
from email.parser import BytesParser
from email.message import Message
from typing import Dict, Any, List, Optional, Tuple

from domain import address_parser
from domain.models import Attachment, EmailAddress, InboundMessage

logger = logging.getLogger(__name__)

DEFAULT_CHARSET = 'utf-8'


class InboundParseError(Exception):
    """Raised when a webhook request does not contain a form submission."""
    pass


def parse_webhook_event(event: Dict[str, Any]) -> InboundMessage:
    """
    Parse an API Gateway / function URL proxy event into an InboundMessage.

    Args:
        event: Lambda proxy event with body, isBase64Encoded and headers

    Returns:
        InboundMessage: The decoded email

    Raises:
        InboundParseError: If the event carries no multipart form body
    """
    headers = {k.lower(): v for k, v in (event.get('headers') or {}).items()}
    content_type = headers.get('content-type', '')

    raw_body = event.get('body') or ''
    if event.get('isBase64Encoded'):
        try:
            body = base64.b64decode(raw_body)
        except (binascii.Error, ValueError) as e:
            raise InboundParseError(f"Request body is not valid base64: {e}")
    else:
        body = raw_body.encode('utf-8') if isinstance(raw_body, str) else raw_body

    logger.info(f"Received webhook body: {len(body):,} bytes, content-type={content_type}")
    return parse_form_data(body, content_type)


def parse_form_data(body: bytes, content_type: str) -> InboundMessage:
    """
    Parse a multipart/form-data body as sent by the inbound gateway.

    Args:
        body: Raw request body
        content_type: Request Content-Type header (including the boundary)

    Returns:
        InboundMessage: The decoded email

    Raises:
        InboundParseError: If the body is not multipart/form-data
    """
    if not body:
        raise InboundParseError("Request body is empty")
    if 'multipart/form-data' not in (content_type or '').lower():
        raise InboundParseError(f"Expected multipart/form-data but got: '{content_type}'")

    # the email parser handles form data once it has a MIME header to start from
    header = f"MIME-Version: 1.0\r\nContent-Type: {content_type}\r\n\r\n".encode('utf-8')
    form = BytesParser(policy=policy.default).parsebytes(header + body)
    if not form.is_multipart():
        raise InboundParseError("Request body has no form parts (missing boundary?)")

    fields, files = _collect_parts(form)
    charsets = _parse_json_field(fields, 'charsets')

    def value(name: str) -> Optional[str]:
        if name not in fields:
            return None
        return _decode(fields[name], charsets.get(name))

    from_address = address_parser.parse_one(value('from'))
    if from_address is None:
        logger.warning("Inbound email has no parsable sender")
        from_address = EmailAddress(name='', email='')

    return InboundMessage(
        from_address=from_address,
        to=address_parser.parse_many(value('to')),
        cc=address_parser.parse_many(value('cc')),
        subject=value('subject') or '',
        html=value('html'),
        text=value('text'),
        attachments=_build_attachments(_parse_json_field(fields, 'attachment-info'), files),
        spf=value('SPF') or value('spf'),
        dkim=value('dkim'),
        sender_ip=value('sender_ip'),
        spam_score=value('spam_score'),
        spam_report=value('spam_report'),
        charsets={k: str(v) for k, v in charsets.items()},
    )


def _collect_parts(form: Message) -> Tuple[Dict[str, bytes], Dict[str, Tuple[str, str, bytes]]]:
    """Split form parts into plain fields and uploaded files."""
    fields = {}
    files = {}
    for part in form.iter_parts():
        name = part.get_param('name', header='content-disposition')
        if not name:
            logger.warning("Skipping form part without a name")
            continue

        payload = part.get_payload(decode=True) or b''
        filename = part.get_filename()
        if filename is not None:
            files[name] = (filename, part.get_content_type(), payload)
        else:
            fields[name] = payload
    return fields, files


def _decode(payload: bytes, charset: Optional[str]) -> str:
    # the gateway reports per field charsets; unknown ones fall back to utf-8
    try:
        return payload.decode(charset or DEFAULT_CHARSET, errors='replace')
    except LookupError:
        logger.warning(f"Unknown charset '{charset}', decoding as {DEFAULT_CHARSET}")
        return payload.decode(DEFAULT_CHARSET, errors='replace')


def _parse_json_field(fields: Dict[str, bytes], name: str) -> Dict[str, Any]:
    if name not in fields:
        return {}
    try:
        parsed = json.loads(_decode(fields[name], DEFAULT_CHARSET))
    except json.JSONDecodeError as e:
        logger.warning(f"Ignoring malformed '{name}' field: {e}")
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _build_attachments(
    attachment_info: Dict[str, Any],
    files: Dict[str, Tuple[str, str, bytes]]
) -> List[Attachment]:
    """
    Combine attachment-info entries with the uploaded files.

    The info is keyed by the form field of the file ("attachment1", ...) and
    may omit filename or type, in which case the file part's values are used.
    """
    attachments = []
    for field_name, info in attachment_info.items():
        info = info if isinstance(info, dict) else {}
        file_name, content_type, data = files.get(field_name, ('', '', b''))
        if field_name not in files:
            logger.warning(f"Attachment {field_name} listed in attachment-info but not uploaded")

        attachments.append(Attachment(
            file_name=info.get('filename') or info.get('name') or file_name,
            content_type=info.get('type') or content_type or 'application/octet-stream',
            base64_data=base64.b64encode(data).decode('ascii'),
            content_id=info.get('content-id') or None,
        ))
    return attachments
