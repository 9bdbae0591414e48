import pytest
from fastapi.testclient import TestClient

from iotledger.api import main as api
from iotledger.service import LedgerService
from iotledger.util import FixedClock

OWNER = "0x" + "a" * 40
ROLLUP = "0x" + "b" * 40
OPERATOR = "0x" + "c" * 40
STRANGER = "0x" + "d" * 40


@pytest.fixture
def service():
    svc = LedgerService.open(":memory:", owner=OWNER, submitter=None, registry_fee=10, clock=FixedClock())
    api.set_service(svc)
    yield svc
    api.set_service(None)
    svc.close()


@pytest.fixture
def client(service):
    return TestClient(api.app)
