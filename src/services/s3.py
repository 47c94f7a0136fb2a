"""
S3 operations for audit copies of received email.

Audit copies are best-effort: a failed upload is logged and never stops
the relay.
"""

import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

from domain.models import InboundMessage

logger = logging.getLogger(__name__)

# Configure S3 client with timeouts to prevent infinite hangs
s3_config = Config(
    retries={
        'max_attempts': 1,  # 1 attempt total (no retries)
        'mode': 'standard'
    },
    connect_timeout=10,  # 10 seconds to establish connection
    read_timeout=60      # 60 seconds max for reading response
)

# Initialize S3 client at module level (thread-safe, reused across invocations)
s3_client = boto3.client('s3', config=s3_config)
logger.info("S3 client initialized with timeouts: connect=10s, read=60s, max_attempts=1")


def _sanitize_for_s3_key(value: str) -> str:
    """
    Sanitize a string for use in S3 object keys.

    Removes/replaces characters that are problematic in S3 keys or URLs.

    Args:
        value: String to sanitize

    Returns:
        Sanitized string safe for S3 keys
    """
    result = re.sub(r'[/\\#?&%<>"]', '_', value)

    # Remove any remaining control characters
    result = re.sub(r'[\x00-\x1f\x7f]', '', result)

    return result


def build_audit_key(message: InboundMessage, now: Optional[datetime] = None) -> str:
    """
    Build the S3 key for the audit copy of message.

    One folder per day: "2019-09/03/23-19-42_ext@user.foo - Inquiry.json"

    Args:
        message: Received email
        now: Time of receipt (defaults to the current UTC time)

    Returns:
        str: S3 object key
    """
    now = now or datetime.now(timezone.utc)
    name = _sanitize_for_s3_key(f"{message.from_address.email} - {message.subject}")
    return f"{now:%Y-%m}/{now:%d}/{now:%H-%M-%S}_{name}.json"


def build_audit_payload(message: InboundMessage) -> Dict[str, Any]:
    """
    Build the audit document for message.

    Returns:
        Dict with from, to, cc, subject, content and the full email
    """
    return {
        'from': message.from_address.email,
        'to': ';'.join(a.email for a in message.to),
        'cc': ';'.join(a.email for a in message.cc),
        'subject': message.subject,
        'content': message.content,
        'email': message.to_dict(),
    }


def upload_processed_result(
    bucket: str,
    key: str,
    content: str,
    content_type: str = 'text/plain'
) -> None:
    """
    Upload content to S3.

    Args:
        bucket: S3 bucket name
        key: S3 object key (path where to upload the file)
        content: Content to upload as a string
        content_type: MIME type stored with the object

    Raises:
        ClientError: If S3 operation fails
        ValueError: If parameters are invalid

    Example:
        >>> upload_processed_result(
        ...     bucket="my-audit-bucket",
        ...     key="2025-11/12/10-00-00_ext@user.foo - Inquiry.json",
        ...     content='{"from": "ext@user.foo"}',
        ...     content_type="application/json"
        ... )
    """
    if not bucket:
        raise ValueError("S3 bucket name cannot be empty")
    if not key:
        raise ValueError("S3 object key cannot be empty")
    if content is None:
        raise ValueError("Content cannot be None")

    try:
        logger.info(
            f"Uploading to S3: bucket={bucket}, key={key}, "
            f"size={len(content)} bytes"
        )

        s3_client.put_object(
            Bucket=bucket,
            Key=key,
            Body=content.encode('utf-8'),
            ContentType=content_type
        )

        logger.info(f"Successfully uploaded to S3: bucket={bucket}, key={key}")

    except ClientError as e:
        error_code = e.response.get('Error', {}).get('Code', 'Unknown')
        error_message = e.response.get('Error', {}).get('Message', str(e))

        logger.error(
            f"Failed to upload to S3: "
            f"bucket={bucket}, key={key}, "
            f"error_code={error_code}, error_message={error_message}"
        )

        raise


def persist_audit_copy(bucket: str, key: str, payload: Dict[str, Any]) -> bool:
    """
    Store an audit copy of a received email.

    Args:
        bucket: S3 bucket name
        key: S3 object key
        payload: JSON serializable audit document

    Returns:
        True if stored, False if the upload failed (failure is only logged)
    """
    try:
        upload_processed_result(
            bucket=bucket,
            key=key,
            content=json.dumps(payload, ensure_ascii=False),
            content_type='application/json'
        )
        return True
    except ClientError as e:
        logger.error(f"Failed to persist audit copy {key}: {e}")
        return False
    except Exception as e:
        logger.error(f"Unexpected error persisting audit copy {key}: {e}")
        return False
