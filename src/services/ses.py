"""
Outbound mail dispatch via Amazon SES.

Builds a MIME message for an OutboundMessage and sends it with
SendRawEmail, which is the SES call that supports attachments.
"""

import base64
import binascii
import logging
import os
from email.message import EmailMessage
from typing import List, Optional, Tuple

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

from domain.models import Attachment, OutboundMessage

logger = logging.getLogger(__name__)

# Configure SES client with timeouts and NO retries (the gateway retries failed webhooks)
ses_config = Config(
    retries={
        'max_attempts': 1,  # 1 attempt total (no retries)
        'mode': 'standard'
    },
    connect_timeout=10,  # 10 seconds to establish connection
    read_timeout=30      # 30 seconds max for reading response
)

region = os.environ.get('AWS_REGION', os.environ.get('AWS_DEFAULT_REGION', 'us-west-2'))

# Initialize SES client at module level (thread-safe, reused across invocations)
ses_client = boto3.client('ses', region_name=region, config=ses_config)
logger.info(f"SES client initialized: region={region}, connect=10s, read=30s, max_attempts=1")


class DispatchError(Exception):
    """
    Raised when SES does not accept a message.

    Attributes:
        error_code: SES error code (e.g. "MessageRejected")
    """

    def __init__(self, message: str, error_code: str = 'Unknown'):
        super().__init__(message)
        self.error_code = error_code


def _decode_attachments(message: OutboundMessage) -> List[Tuple[Attachment, bytes]]:
    decoded = []
    for attachment in message.attachments:
        try:
            decoded.append((attachment, base64.b64decode(attachment.base64_data)))
        except (binascii.Error, ValueError) as e:
            logger.warning(f"Skipping attachment {attachment.file_name} with invalid base64 data: {e}")
    return decoded


def build_mime_message(message: OutboundMessage) -> EmailMessage:
    """
    Build the MIME message for message.

    Inline parts of HTML bodies go into a multipart/related container so the
    body can reference them via "cid:"; everything else is attached.

    Args:
        message: The outbound message

    Returns:
        EmailMessage: Ready to be serialized with bytes()
    """
    mime = EmailMessage()
    mime['From'] = message.from_address
    mime['To'] = message.to_address
    mime['Subject'] = message.subject

    if message.is_html:
        mime.set_content(message.body, subtype='html')
    else:
        mime.set_content(message.body)

    decoded = _decode_attachments(message)
    related = [(a, data) for a, data in decoded if a.is_inline and message.is_html]
    attached = [(a, data) for a, data in decoded if not (a.is_inline and message.is_html)]

    # related parts first: a multipart/mixed message can't be made related
    for attachment, data in related:
        maintype, _, subtype = (attachment.content_type or 'application/octet-stream').partition('/')
        mime.add_related(
            data,
            maintype=maintype,
            subtype=subtype or 'octet-stream',
            filename=attachment.file_name or None,
            disposition='inline',
            cid=f"<{attachment.content_id.strip('<>')}>"
        )

    for attachment, data in attached:
        maintype, _, subtype = (attachment.content_type or 'application/octet-stream').partition('/')
        mime.add_attachment(
            data,
            maintype=maintype,
            subtype=subtype or 'octet-stream',
            filename=attachment.file_name or None
        )

    return mime


def send_email(message: OutboundMessage, configuration_set: Optional[str] = None) -> str:
    """
    Send message via SES.

    Args:
        message: The outbound message (exactly one recipient)
        configuration_set: Optional SES configuration set name

    Returns:
        str: SES message id

    Raises:
        DispatchError: If SES rejects the message
    """
    raw = bytes(build_mime_message(message))

    kwargs = {
        'Source': message.from_address,
        'Destinations': [message.to_address],
        'RawMessage': {'Data': raw},
    }
    if configuration_set:
        kwargs['ConfigurationSetName'] = configuration_set

    logger.info(
        f"Sending email via SES: from={message.from_address}, to={message.to_address}, "
        f"size={len(raw):,} bytes, attachments={len(message.attachments)}"
    )

    try:
        response = ses_client.send_raw_email(**kwargs)
    except ClientError as e:
        error_code = e.response.get('Error', {}).get('Code', 'Unknown')
        error_message = e.response.get('Error', {}).get('Message', str(e))

        logger.error(
            f"SES did not accept the email: "
            f"from={message.from_address}, to={message.to_address}, "
            f"error_code={error_code}, error_message={error_message}"
        )
        raise DispatchError(
            f"SES did not accept the email. The response was: {error_code}: {error_message}",
            error_code=error_code
        )

    message_id = response.get('MessageId', '')
    logger.info(f"Successfully sent email via SES: message_id={message_id}")
    return message_id
