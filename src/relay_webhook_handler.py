"""
AWS Lambda handler for the inbound email webhook.

Thin orchestration layer that delegates to RelayProcessor.
Policy: any response other than 2xx makes the inbound gateway retry the
delivery, so only failures worth retrying return 5xx.
"""

import json
import logging
import os
from typing import Dict, Any

from domain.relay_processor import RelayProcessor
from services.config import ConfigurationError, load_settings
from services.inbound_parser import InboundParseError, parse_webhook_event
from services.ses import DispatchError

# Configure logging
logger = logging.getLogger()
logger.setLevel(os.environ.get('LOG_LEVEL', 'INFO').upper())

# Add console handler for local testing (AWS Lambda provides handlers automatically)
if not logger.handlers:
    console_handler = logging.StreamHandler()
    formatter = logging.Formatter('%(levelname)s - %(message)s')
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

ENVIRONMENT = os.environ.get('ENVIRONMENT', 'dev')

# Initialize processor once at module level (reused across invocations)
relay_processor = RelayProcessor()


def _response(status_code: int, body: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'statusCode': status_code,
        'headers': {'Content-Type': 'application/json'},
        'body': json.dumps(body)
    }


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Relay one email posted by the inbound gateway.

    Args:
        event: API Gateway / function URL proxy event with the multipart body
        context: Lambda context

    Returns:
        Proxy response: 200 on success, 400 for malformed requests,
        500 for configuration and dispatch failures
    """
    logger.info(f"Environment: {ENVIRONMENT}")

    try:
        message = parse_webhook_event(event)
    except InboundParseError as e:
        logger.error(f"Invalid webhook request: {e}")
        return _response(400, {'error': str(e)})

    try:
        settings = load_settings()
        result = relay_processor.process(message, settings)

    except ConfigurationError as e:
        logger.critical(f"Relay is misconfigured: {e}")
        return _response(500, {'error': 'Configuration error', 'message': str(e)})

    except DispatchError as e:
        logger.error(f"Failed to dispatch email ({e.error_code}): {e}")
        return _response(500, {'error': 'Dispatch failed', 'message': str(e)})

    except Exception as e:
        logger.critical(f"Failed to process request: {e}", exc_info=True)
        return _response(500, {'error': 'Internal server error', 'message': str(e)})

    logger.info(f"Processed: {result!r}")

    body = {
        'outcome': str(result.outcome.kind) if result.outcome else None,
        'messageId': result.dispatch_id,
        'auditKey': result.audit_key,
    }
    return _response(200, body)


def health_check(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Simple health check endpoint for monitoring.
    """
    try:
        settings = load_settings()
    except ConfigurationError as e:
        return _response(500, {
            'status': 'misconfigured',
            'environment': ENVIRONMENT,
            'error': str(e)
        })

    return _response(200, {
        'status': 'healthy',
        'environment': ENVIRONMENT,
        'relayConfigured': settings.relay_enabled,
        'auditConfigured': settings.audit_enabled,
        'sendAsDomain': settings.send_as_domain
    })
