"""
Tests for sender authorization.
"""

import pytest
import sys
import os

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../src'))

from domain.authorizer import authorize
from domain.models import AuthResult

OWNER = "me@privatemail.example.com"
VALID_DKIM = "{@privatemail.example.com : pass}"


class TestAuthorize:
    """Test authorize."""

    def test_all_checks_pass(self):
        assert authorize(OWNER, OWNER, "pass", VALID_DKIM) == AuthResult.AUTHORIZED

    def test_comparisons_ignore_case(self):
        result = authorize("Me@PrivateMail.example.com", OWNER, "PASS", "{@PRIVATEMAIL.example.com : Pass}")

        assert result == AuthResult.AUTHORIZED

    def test_other_sender(self):
        assert authorize("ext@user.foo", OWNER, "pass", "{@user.foo : pass}") == AuthResult.INVALID_SENDER

    def test_empty_sender(self):
        assert authorize("", OWNER, "pass", VALID_DKIM) == AuthResult.INVALID_SENDER

    @pytest.mark.parametrize("spf", [None, "", "softfail", "fail", "none", "passed"])
    def test_spf_not_pass(self, spf):
        assert authorize(OWNER, OWNER, spf, VALID_DKIM) == AuthResult.SPF_FAIL

    @pytest.mark.parametrize("dkim", [
        None,
        "",
        "none",
        "{@privatemail.example.com : fail}",
        "{@other.example.com : pass}",
        "{@privatemail.example.com : pass, @other.example.com : pass}",
        "@privatemail.example.com : pass",
    ])
    def test_dkim_shape_mismatch(self, dkim):
        assert authorize(OWNER, OWNER, "pass", dkim) == AuthResult.DKIM_FAIL

    def test_identity_checked_before_spf_and_dkim(self):
        assert authorize("ext@user.foo", OWNER, "softfail", "none") == AuthResult.INVALID_SENDER

    def test_spf_checked_before_dkim(self):
        assert authorize(OWNER, OWNER, "softfail", "none") == AuthResult.SPF_FAIL


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
