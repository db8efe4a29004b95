"""Pytest configuration and fixtures."""

import json
from collections import defaultdict, deque
from decimal import Decimal

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from gpu_agent.agents.heuristic import HeuristicPlanner
from gpu_agent.database import Database
from gpu_agent.engine import TickEngine
from gpu_agent.models.job import Job
from gpu_agent.models.vendor import Vendor
from gpu_agent.services.ledger import LedgerStore
from gpu_agent.services.vendor_client import VendorClient

VENDOR_SECRET = "test-secret"


class ScriptedVendor:
    """httpx transport double: queued responses per path, every request recorded."""

    def __init__(self):
        self.responses = defaultdict(deque)
        self.requests = []

    def add(self, path, status_code=200, json=None, headers=None):
        self.responses[path].append(httpx.Response(status_code, json=json, headers=headers))
        return self

    def add_handler(self, path, handler):
        self.responses[path].append(handler)
        return self

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.responses[request.url.path]
        if not queue:
            return httpx.Response(500, json={"error": f"unscripted call to {request.url.path}"})
        response = queue.popleft()
        if callable(response):
            return response(request)
        return response

    def requests_to(self, path):
        return [r for r in self.requests if r.url.path == path]

    def bodies_to(self, path):
        return [json.loads(r.content) for r in self.requests_to(path)]

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self.handler))


def quote_body(price=1.4, eta=60, currency="USD"):
    return {
        "vendorJobTemplateId": "tmpl_A10_1",
        "priceEstimate": price,
        "currency": currency,
        "etaMinutes": eta,
    }


def submit_body(vendor_job_id="vgpu_1", **extra):
    return {"vendorJobId": vendor_job_id, "status": "running", **extra}


@pytest.fixture(scope="function")
def database():
    """In-memory SQLite database shared by every session in a test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    database = Database("sqlite://", engine=engine)
    database.create_all()

    yield database

    database.dispose()


@pytest.fixture(scope="function")
def test_db(database):
    db = database.session()

    yield db

    db.close()


@pytest.fixture
def ledger(test_db):
    return LedgerStore(test_db)


@pytest.fixture
def reload(test_db):
    """Fetch a fresh copy of a record after the engine's session committed."""

    def _reload(model, record_id):
        test_db.expire_all()
        return test_db.get(model, record_id)

    return _reload


@pytest.fixture
def make_vendor(test_db):
    def _make(vendor_id="gpu_vendor_1", price="1.4", endpoint=None, gpu_types=("A10", "A100")):
        vendor = Vendor(
            id=vendor_id,
            name=vendor_id.replace("_", " ").title(),
            endpoint=endpoint or f"http://{vendor_id.replace('_', '-')}.test",
            base_price_per_hour=Decimal(price),
            reliability_score=0.9,
            supported_gpu_types=list(gpu_types),
        )
        test_db.add(vendor)
        test_db.commit()
        return vendor

    return _make


@pytest.fixture
def make_run(ledger):
    def _make(budget="2.0", goal="Fine-tune a sentiment model"):
        return ledger.create_run("user-1", goal, Decimal(budget))

    return _make


@pytest.fixture
def make_job(test_db):
    def _make(run, vendor_id="gpu_vendor_1", status="running", vendor_job_id="vgpu_1", expected_cost="1.4"):
        job = Job(
            run_id=run.id,
            vendor_id=vendor_id,
            vendor_job_id=vendor_job_id,
            status=status,
            expected_cost=Decimal(expected_cost),
            expected_duration_minutes=60,
        )
        test_db.add(job)
        test_db.commit()
        return job

    return _make


@pytest.fixture
def vendor_api():
    return ScriptedVendor()


@pytest.fixture
def vendor_client(vendor_api):
    client = VendorClient(vendor_api.client(), secret=VENDOR_SECRET)
    yield client
    client.close()


@pytest.fixture
def tick_engine(database, vendor_client):
    return TickEngine(database, vendor_client, HeuristicPlanner(max_hours_per_job=1.0))
