"""
Unit tests for the Stripe deposit provider.

The Stripe SDK is patched; nothing leaves the process.
"""

import json
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import patch

import pytest
import stripe

from backend.app.services.errors import ProviderError, WebhookVerificationError
from backend.app.services.payments import StripeDepositProvider


@pytest.fixture
def stripe_provider():
    return StripeDepositProvider(
        secret_key="sk_test_123",
        webhook_secret="whsec_123",
        currency="sgd",
        public_base_url="https://salon.test/",
        timeout=2.0,
    )


def _create_checkout(provider, amount=1000, expires_at=None):
    return provider.create_checkout(
        deposit_id=7,
        appointment_id=3,
        amount=amount,
        customer_email="carol@example.com",
        description="Deposit: Haircut on 2030-01-07 10:00",
        expires_at=expires_at or datetime(2030, 1, 7, 2, 15),
    )


class TestCreateCheckout:
    def test_creates_session_with_deposit_metadata(self, stripe_provider):
        session = SimpleNamespace(id="cs_test_abc", url="https://checkout.stripe.com/c/cs_test_abc")

        with patch.object(stripe.checkout.Session, "create", return_value=session) as create:
            result = _create_checkout(stripe_provider)

        assert result.session_id == "cs_test_abc"
        assert result.url == "https://checkout.stripe.com/c/cs_test_abc"

        kwargs = create.call_args.kwargs
        assert kwargs["api_key"] == "sk_test_123"
        assert kwargs["mode"] == "payment"
        assert kwargs["metadata"] == {"deposit_id": "7", "appointment_id": "3"}
        assert kwargs["line_items"][0]["price_data"]["unit_amount"] == 1000
        assert kwargs["line_items"][0]["price_data"]["currency"] == "sgd"
        assert kwargs["success_url"] == "https://salon.test/booking/success?appointment=3"

    def test_session_lives_at_least_thirty_minutes(self, stripe_provider):
        session = SimpleNamespace(id="cs_test_abc", url="https://checkout.stripe.com/c/cs_test_abc")
        now = datetime.now(timezone.utc)
        hold_expiry = (now + timedelta(minutes=15)).replace(tzinfo=None)

        with patch.object(stripe.checkout.Session, "create", return_value=session) as create:
            _create_checkout(stripe_provider, expires_at=hold_expiry)

        assert create.call_args.kwargs["expires_at"] >= int(now.timestamp()) + 30 * 60

    def test_stripe_error_becomes_provider_error(self, stripe_provider):
        with patch.object(
            stripe.checkout.Session, "create", side_effect=stripe.APIConnectionError("network down")
        ):
            with pytest.raises(ProviderError):
                _create_checkout(stripe_provider)

    def test_non_positive_amount_rejected(self, stripe_provider):
        with pytest.raises(ValueError):
            _create_checkout(stripe_provider, amount=0)


class TestVerifyWebhook:
    payload = json.dumps({"type": "checkout.session.completed", "data": {"object": {"id": "cs_1"}}}).encode()

    def test_valid_signature_returns_event(self, stripe_provider):
        with patch.object(stripe.Webhook, "construct_event") as construct:
            event = stripe_provider.verify_webhook(self.payload, "t=1,v1=abc")

        construct.assert_called_once_with(self.payload, "t=1,v1=abc", "whsec_123")
        assert event["type"] == "checkout.session.completed"

    def test_missing_signature_rejected(self, stripe_provider):
        with pytest.raises(WebhookVerificationError):
            stripe_provider.verify_webhook(self.payload, None)

    def test_bad_signature_rejected(self, stripe_provider):
        with patch.object(
            stripe.Webhook,
            "construct_event",
            side_effect=stripe.SignatureVerificationError("No signatures found", "t=1,v1=bad"),
        ):
            with pytest.raises(WebhookVerificationError):
                stripe_provider.verify_webhook(self.payload, "t=1,v1=bad")

    def test_unconfigured_secret_rejects_everything(self):
        provider = StripeDepositProvider(secret_key="sk_test_123", webhook_secret="")

        with pytest.raises(WebhookVerificationError):
            provider.verify_webhook(self.payload, "t=1,v1=abc")


class TestRefund:
    def test_refund_returns_id(self, stripe_provider):
        with patch.object(stripe.Refund, "create", return_value=SimpleNamespace(id="re_1")) as create:
            assert stripe_provider.refund("pi_1") == "re_1"

        assert create.call_args.kwargs["payment_intent"] == "pi_1"

    def test_refund_failure(self, stripe_provider):
        with patch.object(stripe.Refund, "create", side_effect=stripe.InvalidRequestError("already refunded", None)):
            with pytest.raises(ProviderError):
                stripe_provider.refund("pi_1")
