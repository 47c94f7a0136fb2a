"""
Service functions for the Lambda handler.

This package contains the I/O around the relay: webhook parsing,
configuration, SES dispatch and S3 audit copies.
"""

__all__ = ['config', 'inbound_parser', 'ses', 's3']
