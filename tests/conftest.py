import json
import os

# Avant tout import paycore: la config est lue à l'import
os.environ.setdefault("PAYMENT_STORE_BACKEND", "memory")
os.environ.setdefault("DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS", "1")
os.environ.setdefault("RETRY_BACKOFF_BASE_SECONDS", "0")
os.environ.setdefault("CURLEC_WEBHOOK_SECRET", "whsec_curlec_test")

import pytest
from typing import Any, Dict, Generator, List, Optional, Union
from fastapi.testclient import TestClient

from paycore.app import app as fastapi_app
from paycore.config import PaymentSettings
from paycore.orders.service import InMemoryOrderService, reset_order_service, set_order_service
from paycore.payments.errors import GatewayRejected, GatewayUnavailable
from paycore.payments.gateways import register_gateway, reset_gateways
from paycore.payments.gateways.curlec_client import CurlecGateway
from paycore.payments.gateways.port import GatewayCreateRequest, GatewayCreateResult
from paycore.payments.repository import InMemoryTransactionStore, reset_store, set_store
from paycore.payments.signing import sign_payload
from paycore.payments.webhook import reset_monitor

WEBHOOK_SECRET = "whsec_curlec_test"


# Marquage automatique selon le dossier
def pytest_collection_modifyitems(config, items):
    for item in items:
        nodeid = item.nodeid.replace("\\", "/")
        if "/tests/unit/" in nodeid or nodeid.startswith("tests/unit/"):
            item.add_marker(pytest.mark.unit)
        elif "/tests/integration/" in nodeid or nodeid.startswith("tests/integration/"):
            item.add_marker(pytest.mark.integration)


class FakeCurlecGateway(CurlecGateway):
    """
    Curlec sans réseau: create_payment rejoue un script de réponses.
    - GatewayCreateResult -> succès; exception -> levée telle quelle.
    Le parsing et la vérification des webhooks restent ceux de Curlec.
    """

    def __init__(self, script: Optional[List[Union[GatewayCreateResult, Exception]]] = None):
        super().__init__("key_test", "secret_test", webhook_secret=WEBHOOK_SECRET)
        self.script = list(script or [])
        self.calls: List[GatewayCreateRequest] = []

    def create_payment(self, request: GatewayCreateRequest) -> GatewayCreateResult:
        self.calls.append(request)
        step = self.script.pop(0) if self.script else GatewayCreateResult(
            reference=f"pi_{len(self.calls)}",
            redirect_url=f"https://pay.curlec.test/{len(self.calls)}",
            raw={"id": f"pi_{len(self.calls)}"},
        )
        if isinstance(step, Exception):
            raise step
        return step


def created(reference: str, url: Optional[str] = None) -> GatewayCreateResult:
    return GatewayCreateResult(reference=reference, redirect_url=url or f"https://pay.curlec.test/{reference}",
                               raw={"id": reference, "status": "requires_action"})


def timeout() -> GatewayUnavailable:
    return GatewayUnavailable("Curlec injoignable: ReadTimeout")


def rejected(reason: str = "Card declined") -> GatewayRejected:
    return GatewayRejected(reason, status_code=402, payload={"error": {"message": reason}})


def curlec_event(reference: str, event_type: str = "payment_intent.succeeded", amount: Optional[int] = 4999,
                 currency: str = "myr", event_id: str = "evt_1", error: Optional[str] = None) -> bytes:
    data: Dict[str, Any] = {"id": reference, "status": event_type.rsplit(".", 1)[-1], "amount": amount,
                            "currency": currency}
    if error:
        data["last_payment_error"] = {"message": error}
    return json.dumps({"id": event_id, "type": event_type, "data": data}).encode("utf-8")


def signed(body: bytes, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
    return sign_payload(body, secret, timestamp)


def checkout_body(**overrides) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "order_id": "O1",
        "payer_id": "P1",
        "amount_minor_units": 4999,
        "currency": "MYR",
        "method": "curlec",
        "payer": {"name": "Aminah Binti Ali", "email": "aminah@example.com", "phone": "+60123456789"},
        "billing_address": {"line1": "12 Jalan Ampang", "city": "Kuala Lumpur", "state": "WP",
                            "postcode": "50450", "country": "MY"},
    }
    body.update(overrides)
    return body


@pytest.fixture(scope="session")
def app():
    return fastapi_app


@pytest.fixture()
def client(app) -> Generator[TestClient, None, None]:
    with TestClient(app) as c:
        yield c


@pytest.fixture(autouse=True)
def store() -> Generator[InMemoryTransactionStore, None, None]:
    s = InMemoryTransactionStore()
    set_store(s)
    yield s
    reset_store()


@pytest.fixture(autouse=True)
def orders(store) -> Generator[InMemoryOrderService, None, None]:
    service = InMemoryOrderService(store)
    set_order_service(service)
    yield service
    reset_order_service()


@pytest.fixture(autouse=True)
def _reset_gateways_and_monitor():
    reset_gateways()
    reset_monitor()
    yield
    reset_gateways()
    reset_monitor()


@pytest.fixture()
def gateway() -> FakeCurlecGateway:
    gw = FakeCurlecGateway()
    register_gateway(gw)
    return gw


@pytest.fixture()
def settings() -> PaymentSettings:
    return PaymentSettings(base_url="https://shop.test", max_create_retries=3, backoff_base=0.5, backoff_max=8.0)
