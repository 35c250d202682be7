import pytest
from datetime import datetime, timezone
from pydantic import ValidationError as PydanticValidationError

from paycore.payments.models import (
    CheckoutRequest,
    CheckoutResult,
    PaymentTransaction,
    TransactionPatch,
    TransactionStatus,
    can_transition,
)

from conftest import checkout_body

S = TransactionStatus


@pytest.mark.parametrize("current,target", [
    (S.CREATED, S.PROCESSING),
    (S.CREATED, S.FAILED),
    (S.CREATED, S.CANCELLED),
    (S.PROCESSING, S.SUCCEEDED),
    (S.PROCESSING, S.FAILED),
    (S.PROCESSING, S.CANCELLED),
])
def test_allowed_transitions(current, target):
    assert can_transition(current, target)


@pytest.mark.parametrize("current,target", [
    (S.CREATED, S.SUCCEEDED),
    (S.PROCESSING, S.CREATED),
    (S.SUCCEEDED, S.FAILED),
    (S.FAILED, S.SUCCEEDED),
    (S.CANCELLED, S.PROCESSING),
    (S.SUCCEEDED, S.SUCCEEDED),
])
def test_forbidden_transitions(current, target):
    assert not can_transition(current, target)


def test_terminal_statuses():
    assert S.SUCCEEDED.is_terminal and S.FAILED.is_terminal and S.CANCELLED.is_terminal
    assert not S.CREATED.is_terminal
    assert not S.PROCESSING.is_terminal


def test_row_roundtrip_keeps_types():
    tx = PaymentTransaction(id="txn_1", order_id="O1", payer_id="P1", amount_minor_units=4999,
                            currency="MYR", method="curlec", status=S.PROCESSING, gateway_reference="pi_1",
                            gateway_response_snapshot={"id": "pi_1"}, attempt_count=2)
    back = PaymentTransaction.from_row(tx.to_row())
    assert back == tx


def test_from_row_accepts_postgres_timestamps_and_defaults():
    row = {
        "id": "txn_1", "order_id": "O1", "payer_id": None, "amount_minor_units": "500",
        "currency": "JPY", "method": "stripe", "status": "created",
        "created_at": "2024-05-01T10:00:00Z", "updated_at": "2024-05-01T10:00:01+00:00",
    }
    tx = PaymentTransaction.from_row(row)
    assert tx.payer_id == "guest"
    assert tx.amount_minor_units == 500
    assert tx.created_at == datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)
    assert tx.gateway_response_snapshot == {}
    assert tx.outcome_notified is False


@pytest.mark.parametrize("raw,micro", [
    ("2024-05-01T10:00:00.12345+00:00", 123450),
    ("2024-05-01T10:00:00.1Z", 100000),
    ("2024-05-01T10:00:00.1234567+00:00", 123456),
])
def test_from_row_accepts_short_and_long_fractional_seconds(raw, micro):
    row = {
        "id": "txn_1", "order_id": "O1", "payer_id": "P1", "amount_minor_units": 500,
        "currency": "MYR", "method": "curlec", "status": "processing",
        "created_at": raw, "updated_at": raw,
    }
    tx = PaymentTransaction.from_row(row)
    assert tx.created_at == datetime(2024, 5, 1, 10, 0, 0, micro, tzinfo=timezone.utc)


def test_public_view_hides_gateway_snapshot():
    tx = PaymentTransaction(id="txn_1", order_id="O1", payer_id="P1", amount_minor_units=100, currency="MYR",
                            method="curlec", gateway_response_snapshot={"secret": "x"})
    public = tx.to_public()
    assert public["transaction_id"] == "txn_1"
    assert "gateway_response_snapshot" not in public


def test_patch_only_lists_set_fields():
    patch = TransactionPatch(expected_status=S.CREATED, status=S.PROCESSING, gateway_reference="pi_1",
                             outcome_notified=False)
    assert patch.changes() == {"status": "processing", "gateway_reference": "pi_1", "outcome_notified": False}


def test_patch_apply_keeps_untouched_fields():
    tx = PaymentTransaction(id="txn_1", order_id="O1", payer_id="P1", amount_minor_units=100, currency="MYR",
                            method="curlec", status=S.PROCESSING, gateway_reference="pi_1")
    now = datetime(2030, 1, 1, tzinfo=timezone.utc)
    out = TransactionPatch(expected_status=S.PROCESSING, status=S.FAILED, failure_reason="declined").apply_to(tx, now)
    assert out.status == S.FAILED
    assert out.gateway_reference == "pi_1"
    assert out.failure_reason == "declined"
    assert out.amount_minor_units == 100
    assert out.updated_at == now


def test_checkout_request_normalizes_codes():
    req = CheckoutRequest.model_validate(checkout_body(currency="myr", method=" Curlec "))
    assert req.currency == "MYR"
    assert req.method == "curlec"
    assert req.billing_address.country == "MY"


@pytest.mark.parametrize("amount", [0, -1, 49.99, "4999", True])
def test_checkout_request_rejects_non_positive_or_non_integer_amounts(amount):
    with pytest.raises(PydanticValidationError):
        CheckoutRequest.model_validate(checkout_body(amount_minor_units=amount))


def test_checkout_request_rejects_bad_email_and_currency():
    with pytest.raises(PydanticValidationError):
        CheckoutRequest.model_validate(checkout_body(payer={"name": "A", "email": "nope", "phone": "+60123"}))
    with pytest.raises(PydanticValidationError):
        CheckoutRequest.model_validate(checkout_body(currency="M1R"))


def test_checkout_result_falls_back_to_client_secret():
    assert CheckoutResult("txn_1", None, "cs_1").to_response() == {
        "success": True, "transaction_id": "txn_1", "redirect_url": "cs_1",
    }
