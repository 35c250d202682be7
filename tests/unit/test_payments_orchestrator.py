import pytest

from paycore.payments.errors import (
    GatewayNotConfigured,
    GatewayRejected,
    GatewayUnavailable,
    InvalidTransition,
    PersistenceError,
    ValidationError,
)
from paycore.payments.models import CheckoutRequest, PaymentOutcome, TransactionPatch, TransactionStatus
from paycore.payments.service import PaymentOrchestrator, backoff_delay
from paycore.payments.verifier import VerificationMonitor
from paycore.payments.webhook import WebhookHandler

from conftest import FakeCurlecGateway, checkout_body, created, curlec_event, rejected, signed, timeout

S = TransactionStatus


def _orchestrator(store, orders, settings, gateway, sleeps=None):
    return PaymentOrchestrator(
        store=store,
        order_service=orders,
        settings=settings,
        gateway_resolver=lambda method: gateway,
        sleep=(sleeps.append if sleeps is not None else (lambda s: None)),
    )


def _request(**overrides):
    return CheckoutRequest.model_validate(checkout_body(**overrides))


def test_checkout_happy_path_moves_to_processing(store, orders, settings):
    gw = FakeCurlecGateway([created("pi_G1")])
    result = _orchestrator(store, orders, settings, gw).checkout(_request())

    tx = store.get(result.transaction_id)
    assert tx.status == S.PROCESSING
    assert tx.gateway_reference == "pi_G1"
    assert tx.attempt_count == 1
    assert tx.gateway_response_snapshot["status"] == "requires_action"
    assert result.redirect_url == "https://pay.curlec.test/pi_G1"
    assert orders.outcomes == []

    sent = gw.calls[0]
    assert sent.transaction_id == result.transaction_id
    assert sent.amount_minor_units == 4999
    assert sent.redirect_url == f"https://shop.test/payment/success?transaction_id={result.transaction_id}"
    assert sent.callback_url == "https://shop.test/api/v1/payments/webhook/curlec"


def test_transient_failures_retry_with_same_transaction_id(store, orders, settings):
    gw = FakeCurlecGateway([timeout(), timeout(), created("pi_G1")])
    sleeps = []
    result = _orchestrator(store, orders, settings, gw, sleeps).checkout(_request())

    assert len({c.transaction_id for c in gw.calls}) == 1
    assert len(gw.calls) == 3
    assert sleeps == [0.5, 1.0]
    tx = store.get(result.transaction_id)
    assert tx.status == S.PROCESSING
    assert tx.attempt_count == 3


def test_three_timeouts_fail_the_transaction_and_notify_order(store, orders, settings):
    gw = FakeCurlecGateway([timeout(), timeout(), timeout()])
    with pytest.raises(GatewayUnavailable) as exc:
        _orchestrator(store, orders, settings, gw).checkout(_request())

    tid = exc.value.transaction_id
    tx = store.get(tid)
    assert tx.status == S.FAILED
    assert tx.failure_reason == "gateway_unavailable"
    assert tx.gateway_reference is None
    assert tx.outcome_notified is True
    assert orders.outcomes == [(tid, PaymentOutcome.FAILED)]
    assert orders.order_status["O1"] == "payment_failed"


def test_rejection_is_not_retried(store, orders, settings):
    gw = FakeCurlecGateway([rejected("Invalid phone number")])
    with pytest.raises(GatewayRejected) as exc:
        _orchestrator(store, orders, settings, gw).checkout(_request())

    assert len(gw.calls) == 1
    assert exc.value.reason == "Invalid phone number"
    tx = store.get(exc.value.transaction_id)
    assert tx.status == S.FAILED
    assert tx.failure_reason == "Invalid phone number"
    assert tx.gateway_response_snapshot == {"error": {"message": "Invalid phone number"}}


def test_unknown_method_creates_nothing(store, orders, settings):
    def resolver(method):
        raise GatewayNotConfigured(method)

    orchestrator = PaymentOrchestrator(store=store, order_service=orders, settings=settings,
                                       gateway_resolver=resolver)
    with pytest.raises(GatewayNotConfigured):
        orchestrator.checkout(_request(method="paypal"))
    assert store.list_for_order("O1") == []


def test_invalid_currency_creates_nothing(store, orders, settings):
    orchestrator = _orchestrator(store, orders, settings, FakeCurlecGateway())
    with pytest.raises(ValidationError):
        orchestrator.create_pending_payment("O1", "P1", 4999, "curlec", "M1R")
    assert store.list_for_order("O1") == []


def test_store_outage_before_gateway_call(orders, settings):
    class DownStore:
        def create(self, *args):
            raise PersistenceError("down")

    gw = FakeCurlecGateway()
    orchestrator = PaymentOrchestrator(store=DownStore(), order_service=orders, settings=settings,
                                       gateway_resolver=lambda m: gw)
    with pytest.raises(PersistenceError):
        orchestrator.checkout(_request())
    assert gw.calls == []


def test_cancel_during_gateway_call_wins(store, orders, settings):
    orchestrator_holder = {}

    class CancellingGateway(FakeCurlecGateway):
        def create_payment(self, request):
            orchestrator_holder["o"].cancel(request.transaction_id, "payer_abandoned")
            return created("pi_late")

    gw = CancellingGateway()
    orchestrator = _orchestrator(store, orders, settings, gw)
    orchestrator_holder["o"] = orchestrator
    with pytest.raises(InvalidTransition):
        orchestrator.checkout(_request())

    [tx] = store.list_for_order("O1")
    assert tx.status == S.CANCELLED
    assert tx.gateway_reference == "pi_late"
    assert tx.gateway_response_snapshot == {"id": "pi_late", "status": "requires_action"}
    assert tx.failure_reason == "payer_abandoned"
    assert orders.outcomes == [(tx.id, PaymentOutcome.CANCELLED)]

    # Le paiement créé côté passerelle reste rattaché: le webhook tardif est un doublon
    handler = WebhookHandler(store=store, order_service=orders, settings=settings,
                             monitor=VerificationMonitor(threshold=1), gateway_resolver=lambda method: gw)
    body = curlec_event("pi_late")
    ack = handler.handle("curlec", body, signed(body))
    assert ack.status == "duplicate"
    assert store.get(tx.id).status == S.CANCELLED
    assert orders.outcomes == [(tx.id, PaymentOutcome.CANCELLED)]


def test_cancel_processing_transaction(store, orders, settings):
    orchestrator = _orchestrator(store, orders, settings, FakeCurlecGateway([created("pi_G1")]))
    result = orchestrator.checkout(_request())

    tx = orchestrator.cancel(result.transaction_id, "order_cancelled")
    assert tx.status == S.CANCELLED
    assert tx.failure_reason == "order_cancelled"
    assert orders.order_status["O1"] == "cancelled"

    with pytest.raises(InvalidTransition) as exc:
        orchestrator.cancel(result.transaction_id)
    assert exc.value.current_status == "cancelled"
    assert len(orders.outcomes) == 1


def test_failed_order_notification_releases_claim(store, settings):
    class FlakyOrders:
        def __init__(self):
            self.calls = 0

        def apply_payment_outcome(self, transaction_id, outcome):
            self.calls += 1
            raise PersistenceError("orders down")

    flaky = FlakyOrders()
    orchestrator = PaymentOrchestrator(store=store, order_service=flaky, settings=settings,
                                       gateway_resolver=lambda m: FakeCurlecGateway([rejected()]))
    with pytest.raises(GatewayRejected) as exc:
        orchestrator.checkout(_request())

    tx = store.get(exc.value.transaction_id)
    assert tx.status == S.FAILED
    assert tx.outcome_notified is False
    assert flaky.calls == 1


def test_read_resumes_notification_after_failed_checkout(store, settings):
    class FlakyOnce:
        def __init__(self):
            self.outcomes = []

        def apply_payment_outcome(self, transaction_id, outcome):
            if not self.outcomes:
                self.outcomes.append(None)
                raise PersistenceError("orders down")
            self.outcomes.append((transaction_id, outcome))

    flaky = FlakyOnce()
    orchestrator = PaymentOrchestrator(store=store, order_service=flaky, settings=settings,
                                       gateway_resolver=lambda m: FakeCurlecGateway([rejected()]))
    with pytest.raises(GatewayRejected) as exc:
        orchestrator.checkout(_request())
    tid = exc.value.transaction_id
    assert store.get(tid).outcome_notified is False

    # Aucun webhook ne viendra: la lecture reprend la notification
    tx = orchestrator.get_transaction(tid)
    assert tx.status == S.FAILED
    assert tx.outcome_notified is True
    assert flaky.outcomes == [None, (tid, PaymentOutcome.FAILED)]

    # Déjà notifiée: l'annulation refusée ne renotifie pas
    with pytest.raises(InvalidTransition):
        orchestrator.cancel(tid)
    assert len(flaky.outcomes) == 2


def test_create_pending_payment_and_reads(store, orders, settings):
    orchestrator = _orchestrator(store, orders, settings, FakeCurlecGateway())
    tid = orchestrator.create_pending_payment("O9", "P1", 1500, "curlec", "myr")
    assert orchestrator.get_transaction(tid).currency == "MYR"
    assert [t.id for t in orchestrator.list_order_transactions("O9")] == [tid]
    store.update(tid, TransactionPatch(expected_status=S.CREATED, status=S.CANCELLED))
    assert orchestrator.get_transaction(tid).is_terminal


@pytest.mark.parametrize("attempt,expected", [(1, 0.5), (2, 1.0), (3, 2.0), (6, 8.0), (10, 8.0)])
def test_backoff_delay_is_capped(attempt, expected):
    assert backoff_delay(attempt, 0.5, 8.0) == expected
