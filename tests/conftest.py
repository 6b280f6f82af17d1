import json
import os
import sys
import uuid

import pytest

# Ensure project root on sys.path for imports
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from leadflow.db import MemoryRecordStore, SQLiteRecordStore
from leadflow.errors import CampaignAPIError
from leadflow.records import Record, NEW


def verdict_json(decision="TIER_1", score=85, **overrides):
    verdict = {
        "decision": decision,
        "score": score,
        "reasoning": "Runs growth at a B2B SaaS company",
        "strengths": ["Decision maker", "Right industry"],
        "concerns": ["Small team"],
        "recommendedApproach": "Mention their recent product launch",
    }
    verdict.update(overrides)
    return json.dumps(verdict)


class FakeClassifier:
    """Returns queued responses in order. Exceptions in the queue are raised."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def classify(self, record, criteria, feedback=None):
        self.calls.append({"record_id": record.id, "criteria": criteria, "feedback": feedback})
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response


class FakeCampaignClient:
    """In-memory stand-in for CampaignClient."""

    def __init__(self, add_results=None, leads=None, list_error=None):
        self.add_results = list(add_results or [{"id": "hr-1"}])
        self.leads = list(leads or [])
        self.list_error = list_error
        self.added = []

    def add_lead(self, lead, list_id):
        self.added.append((lead, list_id))
        result = self.add_results.pop(0) if len(self.add_results) > 1 else self.add_results[0]
        if isinstance(result, Exception):
            raise result
        return result

    def iter_campaign_leads(self, campaign_id, page_size=100):
        for lead in self.leads:
            yield lead
        if self.list_error:
            raise self.list_error


def server_error():
    return CampaignAPIError("Campaign service error (500): boom", status=500)


@pytest.fixture
def memory_store():
    store = MemoryRecordStore()
    store.init()
    return store


@pytest.fixture
def sqlite_store(tmp_path):
    store = SQLiteRecordStore(str(tmp_path / "leads.db"))
    store.init()
    return store


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    """Runs the test against both store implementations."""
    if request.param == "memory":
        store = MemoryRecordStore()
    else:
        store = SQLiteRecordStore(str(tmp_path / "leads.db"))
    store.init()
    return store


@pytest.fixture
def make_record():
    def _make(store=None, **fields):
        n = uuid.uuid4().hex[:8]
        defaults = {
            "id": uuid.uuid4().hex,
            "external_id": f"https://www.linkedin.com/in/person-{n}",
            "name": "Jane Doe",
            "title": "Head of Growth",
            "company": "Acme Analytics",
            "location": "London, UK",
            "about": "Building growth teams.",
            "stage": NEW,
        }
        defaults.update(fields)
        record = Record(**defaults)
        if store is not None:
            store.put(record)
        return record
    return _make


@pytest.fixture
def criteria_file(tmp_path):
    path = tmp_path / "criteria.md"
    path.write_text("TIER_1: B2B SaaS founders\nSKIP: students\n", encoding="utf-8")
    return str(path)


@pytest.fixture
def lead_config(tmp_path, criteria_file):
    """A full config dict that never touches the real environment."""
    return {
        'DB_PATH': str(tmp_path / "leads.db"),
        'MAX_ACQUISITIONS_PER_DAY': 80,
        'MIN_DELAY_SECONDS': 3.0,
        'MAX_DELAY_SECONDS': 8.0,
        'DELAY_STDDEV_SECONDS': 1.5,
        'CSV_EXPORT_DIR': str(tmp_path),
        'CRITERIA_FILE': criteria_file,
        'QUALIFYING_DECISIONS': ['TIER_1', 'TIER_2', 'QUALIFIED'],
        'MIN_SCORE': 60,
        'MAX_PROSE_CHARS': 500,
        'MAX_LIST_ITEMS': 5,
        'MAX_LIST_ITEM_CHARS': 100,
        'CLASSIFY_MAX_ATTEMPTS': 2,
        'CLASSIFY_WORKERS': 1,
        'ANTHROPIC_API_KEY': 'test-anthropic-key',
        'ANTHROPIC_MODEL': 'claude-test',
        'ANTHROPIC_MAX_TOKENS': 512,
        'CAMPAIGN_API_KEY': 'test-campaign-key',
        'CAMPAIGN_BASE_URL': 'https://campaign.test/api/public',
        'CAMPAIGN_LIST_ID': '4242',
        'CAMPAIGN_ID': '777',
        'ACCEPTED_STATUS': 'ConnectionAccepted',
        'PAGE_SIZE': 100,
        'REQUEST_TIMEOUT': 5,
        'CLAIM_LEASE_SECONDS': 120,
        'SENDER_NAME': 'Sam Sender',
        'SENDER_COMPANY': 'Sender Ltd',
        'DAILY_RUN_TIME': '09:00',
    }
