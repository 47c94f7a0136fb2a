"""
Pytest configuration and fixtures for all tests.
"""

import os
import sys
import pytest

# Add src to Python path before any imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../src'))

# Set up test environment variables before importing any modules
os.environ.setdefault('AWS_DEFAULT_REGION', 'us-west-2')
os.environ.setdefault('ENVIRONMENT', 'test')
os.environ.setdefault('LOG_LEVEL', 'INFO')

from domain.models import EmailAddress, InboundMessage  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def setup_test_environment():
    """Set up test environment variables for all tests."""
    # Environment variables are already set above
    yield


@pytest.fixture
def make_message():
    """Factory for inbound messages sent to me@domain.com."""
    def _make(from_email='ext@user.foo', subject='Inquiry', **kwargs):
        kwargs.setdefault('to', [EmailAddress(name='', email='me@domain.com')])
        return InboundMessage(
            from_address=EmailAddress(name='', email=from_email),
            subject=subject,
            **kwargs
        )
    return _make
