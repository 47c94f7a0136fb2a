"""
Tests for the relay decision engine.
"""

import pytest
import sys
import os

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../src'))

from domain.models import Attachment, AuthResult, EmailAddress, OutcomeKind
from domain.relay_engine import (
    REASON_FORMAT_DRIFT,
    REASON_NO_SANITIZER,
    RelayDecisionEngine,
    normalize_domain,
    select_domain_recipient,
)
from domain.sanitizers import OUTLOOK_WEB, MetadataSanitizer
from domain.subject_parser import SubjectParser

OWNER = "me@privatemail.example.com"
OWNER_DKIM = "{@privatemail.example.com : pass}"


def _unchanged(content, tag, relay_target_email, to, token):
    return content, True


def _drifted(content, tag, relay_target_email, to, token):
    return content, False


ACCEPT_ALL = MetadataSanitizer("accept-all", ("",), _unchanged, _unchanged)
ALWAYS_DRIFT = MetadataSanitizer("always-drift", ("",), _drifted, _drifted)


@pytest.fixture
def engine():
    return RelayDecisionEngine(sanitizers=[ACCEPT_ALL])


class TestRecipientSelection:
    """Test picking the domain address the email was sent to."""

    @pytest.mark.parametrize("domain", ["domain.com", "@domain.com", " domain.com "])
    def test_normalize_domain(self, domain):
        assert normalize_domain(domain) == "@domain.com"

    def test_first_domain_address_wins(self, make_message):
        message = make_message(
            to=[
                EmailAddress(name="", email="someoneelse@notmydomain.com"),
                EmailAddress(name="", email="me@domain.com"),
            ],
            cc=[EmailAddress(name="", email="another@domain.com")]
        )

        assert select_domain_recipient(message, "@domain.com") == "me@domain.com"

    def test_cc_is_searched(self, make_message):
        message = make_message(
            to=[EmailAddress(name="", email="someoneelse@notmydomain.com")],
            cc=[EmailAddress(name="", email="Another@Domain.com")]
        )

        assert select_domain_recipient(message, "@domain.com") == "Another@Domain.com"

    def test_subdomain_does_not_match(self, make_message):
        message = make_message(to=[EmailAddress(name="", email="me@foo.domain.com")])

        assert select_domain_recipient(message, "@domain.com") == "unknown@domain.com"

    def test_bcc_falls_back_to_unknown(self, make_message):
        message = make_message(to=[])

        assert select_domain_recipient(message, "@domain.com") == "unknown@domain.com"


class TestForwardToOwner:
    """Emails without relay tag are forwarded to the owner."""

    def test_mail_from_external_user(self, engine, make_message):
        message = make_message(html="Foo", subject="Inquiry")

        outcome = engine.decide(message, OWNER, "domain.com", True)

        assert outcome.kind == OutcomeKind.FORWARD_TO_OWNER
        assert outcome.message.from_address == "me@domain.com"
        assert outcome.message.to_address == OWNER
        assert outcome.message.subject == "Relay for ext@user.foo: Inquiry"
        assert outcome.message.body == "Foo"
        assert outcome.message.is_html is True
        assert outcome.auth_result is None

    def test_mail_from_owner_without_tag_is_relayed_back(self, engine, make_message):
        message = make_message(from_email=OWNER, html="Foo", subject="Inquiry")

        outcome = engine.decide(message, OWNER, "domain.com", True)

        assert outcome.kind == OutcomeKind.FORWARD_TO_OWNER
        assert outcome.message.to_address == OWNER
        assert outcome.message.subject == f"Relay for {OWNER}: Inquiry"

    def test_tag_with_other_token_is_not_recognized(self, make_message):
        engine = RelayDecisionEngine(subject_parser=SubjectParser("Email Relay:"), sanitizers=[ACCEPT_ALL])
        message = make_message(
            from_email=OWNER, html="Foo", subject="Relay for ext@user.foo: Test",
            spf="pass", dkim=OWNER_DKIM
        )

        outcome = engine.decide(message, OWNER, "domain.com", True)

        assert outcome.kind == OutcomeKind.FORWARD_TO_OWNER
        assert outcome.message.to_address == OWNER
        assert outcome.message.subject == f"Email Relay: {OWNER}: Relay for ext@user.foo: Test"

    def test_multiple_recipients_sent_from_first_domain_address(self, engine, make_message):
        message = make_message(
            html="Foo",
            to=[
                EmailAddress(name="", email="someoneelse@notmydomain.com"),
                EmailAddress(name="", email="me@domain.com"),
            ],
            cc=[EmailAddress(name="", email="another@domain.com")]
        )

        outcome = engine.decide(message, OWNER, "domain.com", True)

        assert outcome.message.from_address == "me@domain.com"
        assert outcome.message.to_address == OWNER

    def test_text_body_and_attachments(self, engine, make_message):
        attachment = Attachment(file_name="a.pdf", content_type="application/pdf", base64_data="JVBERg==")
        message = make_message(text="Plain", attachments=[attachment])

        outcome = engine.decide(message, OWNER, "domain.com", True)

        assert outcome.message.body == "Plain"
        assert outcome.message.is_html is False
        assert outcome.message.attachments == [attachment]


class TestSendAsDomain:
    """Owner emails with relay tag are sent in the name of the domain."""

    def test_send_to_external_user(self, engine, make_message):
        message = make_message(
            from_email=OWNER, text="Foo", subject="Relay for ext@user.foo: Inquiry",
            spf="pass", dkim=OWNER_DKIM
        )

        outcome = engine.decide(message, OWNER, "domain.com", True)

        assert outcome.kind == OutcomeKind.SEND_AS_DOMAIN
        assert outcome.message.from_address == "me@domain.com"
        assert outcome.message.to_address == "ext@user.foo"
        assert outcome.message.subject == "Inquiry"
        assert outcome.auth_result == AuthResult.AUTHORIZED
        assert outcome.sends_externally is True

    def test_send_to_self(self, engine, make_message):
        message = make_message(
            from_email=OWNER, html="Foo", subject=f"Relay for {OWNER}: Inquiry",
            spf="pass", dkim=OWNER_DKIM
        )

        outcome = engine.decide(message, OWNER, "domain.com", True)

        assert outcome.kind == OutcomeKind.SEND_AS_DOMAIN
        assert outcome.message.to_address == OWNER
        assert outcome.message.subject == "Inquiry"

    def test_reply_prefix_is_kept(self, engine, make_message):
        message = make_message(
            from_email=OWNER, html="Foo", subject="RE: Relay for ext@user.foo: Inquiry",
            spf="pass", dkim=OWNER_DKIM
        )

        outcome = engine.decide(message, OWNER, "domain.com", True)

        assert outcome.message.subject == "RE: Inquiry"

    @pytest.mark.parametrize("token, subject", [
        ("Relay for", "Relay for ext@user.foo: Test"),
        ("Email Relay:", "Email Relay: ext@user.foo: Test"),
    ])
    def test_reply_metadata_is_replaced(self, make_message, token, subject):
        engine = RelayDecisionEngine(subject_parser=SubjectParser(token), sanitizers=[OUTLOOK_WEB])
        text = (
            "This is my response\n\n"
            "___________________________________________\n"
            "From: me@domain.com <me@domain.com>\n"
            "Sent: Tuesday, September 3, 2019 11:19:42 PM\n"
            "To: me@live.com <me@live.com>\n"
            f"Subject: {subject}\n"
            " \n"
            "This is the original message from someone"
        )
        message = make_message(
            from_email="me@live.com", text=text, subject=subject,
            spf="pass", dkim="{@live.com : pass}"
        )

        outcome = engine.decide(message, "me@live.com", "domain.com", True)

        assert outcome.kind == OutcomeKind.SEND_AS_DOMAIN
        assert outcome.message.to_address == "ext@user.foo"
        assert outcome.message.subject == "Test"
        body = outcome.message.body
        assert "From: me@domain.com <me@domain.com>" not in body
        assert "To: me@live.com <me@live.com>" not in body
        assert f"Subject: {subject}" not in body
        assert "From: ext@user.foo <ext@user.foo>" in body
        assert "To: me@domain.com <me@domain.com>" in body
        assert "Subject: Test" in body

    def test_html_is_sanitized_before_text(self, make_message):
        calls = []

        def plain(content, tag, relay_target_email, to, token):
            calls.append('text')
            return content, True

        def html(content, tag, relay_target_email, to, token):
            calls.append('html')
            return "<p>clean</p>", True

        engine = RelayDecisionEngine(sanitizers=[MetadataSanitizer("spy", ("",), plain, html)])
        message = make_message(
            from_email=OWNER, html="<p>dirty</p>", text="dirty", subject="Relay for ext@user.foo: Hi",
            spf="pass", dkim=OWNER_DKIM
        )

        outcome = engine.decide(message, OWNER, "domain.com", True)

        assert calls == ['html']
        assert outcome.message.body == "<p>clean</p>"


class TestWarnings:
    """Every failed check ends in exactly one warning to the owner."""

    def test_send_as_domain_disabled(self, engine, make_message):
        message = make_message(
            from_email=OWNER, html="Foo", subject="Relay for ext@user.foo: Inquiry",
            spf="pass", dkim=OWNER_DKIM
        )

        outcome = engine.decide(message, OWNER, "domain.com", False)

        assert outcome.kind == OutcomeKind.WARN_DISABLED
        assert outcome.message.to_address == OWNER
        assert outcome.message.subject == "[WARNING] Relay for ext@user.foo: Inquiry"
        assert outcome.message.body.endswith("Foo")

    def test_external_user_with_tag(self, engine, make_message):
        message = make_message(html="Foo", subject="Relay for some@service.hack: Inquiry")

        outcome = engine.decide(message, OWNER, "domain.com", True)

        assert outcome.kind == OutcomeKind.WARN_SPOOFED
        assert outcome.auth_result == AuthResult.INVALID_SENDER
        assert outcome.message.to_address == OWNER
        assert outcome.message.subject == "[SPOOFWARNING] Relay for some@service.hack: Inquiry"
        assert "Someone tried to send an email in the name of the domain" in outcome.message.body
        assert "Their email was: ext@user.foo" in outcome.message.body
        assert outcome.sends_externally is False

    def test_spoofed_owner(self, engine, make_message):
        message = make_message(
            from_email=OWNER, html="Foo", subject="Relay for some@service.hack: Inquiry",
            spf="softfail", dkim="none"
        )

        outcome = engine.decide(message, OWNER, "domain.com", True)

        assert outcome.kind == OutcomeKind.WARN_SPOOFED
        assert outcome.auth_result == AuthResult.SPF_FAIL
        assert "SPF: softfail, DKIM: none" in outcome.message.body

    def test_spf_fail_end_to_end(self, engine, make_message):
        message = make_message(
            from_email=OWNER, text="Foo", subject="Relay for ext@user.foo: Inquiry",
            spf="fail", dkim=OWNER_DKIM
        )

        outcome = engine.decide(message, OWNER, "domain.com", True)

        assert outcome.kind == OutcomeKind.WARN_SPOOFED
        assert outcome.message.subject == "[SPOOFWARNING] Relay for ext@user.foo: Inquiry"
        assert outcome.message.to_address == OWNER

    def test_spoof_details_are_escaped(self, engine, make_message):
        message = make_message(
            from_email='<script>x</script>@user.foo', html="Foo", subject="Relay for some@service.hack: Inquiry",
            spf='<img src=x onerror=alert(1)>', dkim='"><b>'
        )

        outcome = engine.decide(message, OWNER, "domain.com", True)

        body = outcome.message.body
        assert "<script>" not in body
        assert "&lt;script&gt;x&lt;/script&gt;@user.foo" in body
        assert "SPF: &lt;img src=x onerror=alert(1)&gt;" in body
        assert "DKIM: &quot;&gt;&lt;b&gt;" in body

    def test_dkim_fail(self, engine, make_message):
        message = make_message(
            from_email=OWNER, html="Foo", subject="Relay for ext@user.foo: Inquiry",
            spf="pass", dkim="{@privatemail.example.com : fail}"
        )

        outcome = engine.decide(message, OWNER, "domain.com", True)

        assert outcome.kind == OutcomeKind.WARN_SPOOFED
        assert outcome.auth_result == AuthResult.DKIM_FAIL

    def test_spoofed_sender_can_be_redacted(self, make_message):
        engine = RelayDecisionEngine(sanitizers=[ACCEPT_ALL], redact_spoofed_sender=True)
        message = make_message(html="Foo", subject="Relay for some@service.hack: Inquiry")

        outcome = engine.decide(message, OWNER, "domain.com", True)

        assert "Their email was: [redacted]" in outcome.message.body
        assert "Their email was: ext@user.foo" not in outcome.message.body

    def test_no_sanitizer_for_owner_provider(self, make_message):
        engine = RelayDecisionEngine(sanitizers=[OUTLOOK_WEB])
        message = make_message(
            from_email=OWNER, html="Foo", subject="Relay for ext@user.foo: Inquiry",
            spf="pass", dkim=OWNER_DKIM
        )

        outcome = engine.decide(message, OWNER, "domain.com", True)

        assert outcome.kind == OutcomeKind.WARN_SANITIZE_FAILED
        assert outcome.reason == REASON_NO_SANITIZER
        assert outcome.message.to_address == OWNER
        assert outcome.message.subject == "[SANITIZE] Relay for ext@user.foo: Inquiry"

    def test_format_drift(self, make_message):
        engine = RelayDecisionEngine(sanitizers=[ALWAYS_DRIFT])
        message = make_message(
            from_email=OWNER, text="From: x\nSent: y\nTo: z\nSubject: w", subject="Relay for ext@user.foo: Inquiry",
            spf="pass", dkim=OWNER_DKIM
        )

        outcome = engine.decide(message, OWNER, "domain.com", True)

        assert outcome.kind == OutcomeKind.WARN_SANITIZE_FAILED
        assert outcome.reason == REASON_FORMAT_DRIFT
        assert outcome.message.to_address == OWNER
        assert "plain text" in outcome.message.body
        assert outcome.message.body.endswith("Subject: w")

    def test_private_address_left_in_link_is_not_sent(self, make_message):
        engine = RelayDecisionEngine(sanitizers=[OUTLOOK_WEB])
        html = (
            "<p>Reply</p><hr><b>From:</b> me@domain.com &lt;me@domain.com&gt;<br>\n"
            "<b>Sent:</b> 01 September 2019 10:10<br>\n"
            '<b>To:</b> <a href="mailto:me@live.com">me@live.com</a><br>\n'
            "<b>Subject:</b> Relay for ext@user.foo: Test"
        )
        message = make_message(
            from_email="me@live.com", html=html, subject="RE: Relay for ext@user.foo: Test",
            spf="pass", dkim="{@live.com : pass}"
        )

        outcome = engine.decide(message, "me@live.com", "domain.com", True)

        assert outcome.kind == OutcomeKind.WARN_SANITIZE_FAILED
        assert outcome.reason == REASON_FORMAT_DRIFT
        assert outcome.message.to_address == "me@live.com"

    @pytest.mark.parametrize("send_as_domain", [True, False])
    def test_warnings_never_reach_external_party(self, make_message, send_as_domain):
        engine = RelayDecisionEngine(sanitizers=[ALWAYS_DRIFT])
        subjects = ["Relay for ext@user.foo: Inquiry", "Relay for some@service.hack: Inquiry"]

        for subject in subjects:
            for from_email in (OWNER, "ext@user.foo"):
                message = make_message(from_email=from_email, html="Foo", subject=subject,
                                       spf="pass", dkim=OWNER_DKIM)

                outcome = engine.decide(message, OWNER, "domain.com", send_as_domain)

                assert outcome.is_warning is True
                assert outcome.message.to_address == OWNER


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
