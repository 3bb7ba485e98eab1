"""Tests for vendor error classification."""

import pytest
import stripe

from marketplace.errors import (
    ErrorKind,
    IdempotentNoOp,
    NotYetPaid,
    ReceiptInvalid,
    classify_provider_error,
)


class TestStripeClassification:
    @pytest.mark.parametrize(
        ("error", "kind"),
        [
            (stripe.SignatureVerificationError("bad sig", "t=1,v1=x"), ErrorKind.FORBIDDEN),
            (stripe.AuthenticationError("bad key"), ErrorKind.CONFIGURATION),
            (stripe.CardError("declined", None, "card_declined"), ErrorKind.VALIDATION),
            (stripe.InvalidRequestError("no such session", "id"), ErrorKind.VALIDATION),
            (stripe.APIConnectionError("timeout"), ErrorKind.PAYMENT_PROVIDER),
            (stripe.RateLimitError("slow down"), ErrorKind.PAYMENT_PROVIDER),
        ],
    )
    def test_stripe_errors(self, error, kind):
        assert classify_provider_error("stripe", error) is kind


class TestAppStoreClassification:
    @pytest.mark.parametrize("code", [21005, 21009, 21100, 21199])
    def test_transient_statuses(self, code):
        assert classify_provider_error("app_store", code) is ErrorKind.PAYMENT_PROVIDER

    @pytest.mark.parametrize("code", [21002, 21003, 21004, 21006, 21010])
    def test_permanent_rejections(self, code):
        assert classify_provider_error("app_store", code) is ErrorKind.RECEIPT_INVALID

    def test_string_status_accepted(self):
        assert classify_provider_error("app_store", "21003") is ErrorKind.RECEIPT_INVALID

    def test_valid_status_is_not_an_error(self):
        with pytest.raises(ValueError):
            classify_provider_error("app_store", 0)


class TestFcmClassification:
    def _body(self, code: int, *error_codes: str) -> dict:
        details = [{"@type": "type.googleapis.com/google.firebase.fcm.v1.FcmError", "errorCode": c} for c in error_codes]
        return {"error": {"code": code, "status": "X", "details": details}}

    def test_unregistered_token(self):
        assert classify_provider_error("fcm", self._body(404, "UNREGISTERED")) is ErrorKind.TOKEN_INVALID

    def test_invalid_argument_token(self):
        assert classify_provider_error("fcm", self._body(400, "INVALID_ARGUMENT")) is ErrorKind.TOKEN_INVALID

    def test_auth_failure(self):
        assert classify_provider_error("fcm", self._body(401)) is ErrorKind.CONFIGURATION

    def test_server_error(self):
        assert classify_provider_error("fcm", self._body(503, "UNAVAILABLE")) is ErrorKind.PAYMENT_PROVIDER

    def test_empty_body(self):
        assert classify_provider_error("fcm", None) is ErrorKind.PAYMENT_PROVIDER


def test_unknown_provider():
    with pytest.raises(ValueError):
        classify_provider_error("paypal", {})


class TestErrorDetail:
    def test_detail_carries_extra_fields(self):
        exc = NotYetPaid(payment_status="unpaid", session_status="open")
        assert exc.status_code == 409
        assert exc.to_detail() == {
            "error": "Payment not captured yet",
            "kind": "conflict",
            "payment_status": "unpaid",
            "session_status": "open",
        }

    def test_custom_message(self):
        assert ReceiptInvalid("Expired", status=21006).to_detail()["error"] == "Expired"

    def test_idempotent_no_op_is_success(self):
        assert IdempotentNoOp().status_code == 200
