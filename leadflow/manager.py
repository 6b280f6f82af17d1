"""
Lead manager - main orchestration module.

Coordinates:
- Acquiring profiles within the daily budget
- Classifying new records
- Submitting qualified records to the campaign
- Reconciling accepted connections
- Follow-up drafting and approval
"""

import logging
import time
from typing import Optional

from leadflow.acquisition import AcquisitionStage
from leadflow.campaign import CampaignClient
from leadflow.classifier import AnthropicClassifier, load_criteria
from leadflow.config import get_config, missing_settings, numeric_id
from leadflow.db import SQLiteRecordStore
from leadflow.errors import ConfigError
from leadflow.followup import FollowupDesk
from leadflow.pacing import QuotaController
from leadflow.qualifier import Qualifier, VerdictLimits
from leadflow.reconcile import AcceptanceReconciler
from leadflow.records import Record, CONNECTED, READY
from leadflow.sources import CsvExportExtractor, find_latest_export, read_export_rows
from leadflow.submission import CampaignSubmitter, default_owner, list_failed_submissions

logger = logging.getLogger(__name__)


class LeadManager:
    """
    Main orchestrator for the lead pipeline.

    Usage:
        manager = LeadManager()

        # Pull profiles from the newest CSV export
        results = manager.acquire_from_csv()

        # Classify and submit
        results = manager.classify_batch()

        # Pick up accepted connections
        results = manager.reconcile()

        # Get status
        status = manager.get_status()

    Stages are built on first use, and each one only checks the settings
    it needs.
    """

    def __init__(
        self,
        store=None,
        classifier=None,
        campaign_client=None,
        extractor=None,
        config: Optional[dict] = None,
        sleep=time.sleep,
    ):
        self.config = config if config is not None else get_config()
        self.owner = default_owner()
        self.sleep = sleep

        if store is None:
            store = SQLiteRecordStore(self.config['DB_PATH'])
        store.init()
        self.store = store

        self.quota = QuotaController(
            store,
            daily_limit=self.config['MAX_ACQUISITIONS_PER_DAY'],
            min_delay=self.config['MIN_DELAY_SECONDS'],
            max_delay=self.config['MAX_DELAY_SECONDS'],
            delay_stddev=self.config['DELAY_STDDEV_SECONDS'],
        )
        self.followups = FollowupDesk(store)

        self._classifier = classifier
        self._campaign_client = campaign_client
        self._extractor = extractor
        self._submitter = None
        self._qualifier = None
        self._verdict_qualifier = None
        self._reconciler = None

    def _require(self, *keys: str) -> None:
        missing = missing_settings(*keys, config=self.config)
        if missing:
            raise ConfigError(f"Missing required settings: {', '.join(missing)}")

    # -----------------------------------------------------------------------
    # Lazily built stages
    # -----------------------------------------------------------------------

    def _get_campaign_client(self):
        if self._campaign_client is None:
            self._require('CAMPAIGN_API_KEY')
            self._campaign_client = CampaignClient(
                self.config['CAMPAIGN_API_KEY'],
                self.config['CAMPAIGN_BASE_URL'],
                timeout=self.config['REQUEST_TIMEOUT'],
            )
        return self._campaign_client

    @property
    def submitter(self) -> CampaignSubmitter:
        if self._submitter is None:
            needed = ['CAMPAIGN_LIST_ID']
            if self._campaign_client is None:
                needed.insert(0, 'CAMPAIGN_API_KEY')
            self._require(*needed)
            self._submitter = CampaignSubmitter(
                self.store,
                self._get_campaign_client(),
                numeric_id(self.config['CAMPAIGN_LIST_ID'], 'CAMPAIGN_LIST_ID'),
                owner=self.owner,
                lease_seconds=self.config['CLAIM_LEASE_SECONDS'],
            )
        return self._submitter

    def _build_qualifier(self, classifier, criteria: str) -> Qualifier:
        return Qualifier(
            self.store,
            classifier,
            criteria,
            submitter=self.submitter,
            qualifying_decisions=self.config['QUALIFYING_DECISIONS'],
            min_score=self.config['MIN_SCORE'],
            limits=VerdictLimits(
                max_prose_chars=self.config['MAX_PROSE_CHARS'],
                max_list_items=self.config['MAX_LIST_ITEMS'],
                max_list_item_chars=self.config['MAX_LIST_ITEM_CHARS'],
            ),
            max_attempts=self.config['CLASSIFY_MAX_ATTEMPTS'],
            owner=self.owner,
            lease_seconds=self.config['CLAIM_LEASE_SECONDS'],
        )

    @property
    def qualifier(self) -> Qualifier:
        """Qualifier backed by the AI classifier."""
        if self._qualifier is None:
            needed = ['CRITERIA_FILE', 'CAMPAIGN_LIST_ID']
            if self._classifier is None:
                needed.append('ANTHROPIC_API_KEY')
            if self._campaign_client is None:
                needed.append('CAMPAIGN_API_KEY')
            self._require(*needed)

            criteria = load_criteria(self.config['CRITERIA_FILE'])
            if self._classifier is None:
                self._classifier = AnthropicClassifier(
                    self.config['ANTHROPIC_API_KEY'],
                    self.config['ANTHROPIC_MODEL'],
                    max_tokens=self.config['ANTHROPIC_MAX_TOKENS'],
                    timeout=self.config['REQUEST_TIMEOUT'],
                )
            self._qualifier = self._build_qualifier(self._classifier, criteria)
        return self._qualifier

    @property
    def verdict_qualifier(self) -> Qualifier:
        """
        Qualifier for verdicts supplied from outside.

        It never calls the classifier, so it needs neither the Anthropic key
        nor the criteria file, only what submission needs.
        """
        if self._qualifier is not None:
            return self._qualifier
        if self._verdict_qualifier is None:
            self._verdict_qualifier = self._build_qualifier(None, '')
        return self._verdict_qualifier

    @property
    def reconciler(self) -> AcceptanceReconciler:
        if self._reconciler is None:
            self._reconciler = AcceptanceReconciler(
                self.store,
                self._get_campaign_client(),
                accepted_status=self.config['ACCEPTED_STATUS'],
                page_size=self.config['PAGE_SIZE'],
            )
        return self._reconciler

    # -----------------------------------------------------------------------
    # Acquisition
    # -----------------------------------------------------------------------

    def acquire(self, source, max_count: Optional[int] = None) -> dict:
        stage = AcquisitionStage(
            self.store,
            self.quota,
            self._extractor or CsvExportExtractor(),
            sleep=self.sleep,
        )
        return stage.acquire_batch(source, max_count)

    def acquire_from_csv(self, path: Optional[str] = None, max_count: Optional[int] = None) -> dict:
        """Acquire from a CSV export (default: newest one in the export dir)."""
        if path is None:
            path = find_latest_export(self.config['CSV_EXPORT_DIR'])
            if path is None:
                raise ConfigError(f"No CSV export found in {self.config['CSV_EXPORT_DIR']}")
        logger.info("Acquiring from %s", path)
        return self.acquire(read_export_rows(path), max_count)

    # -----------------------------------------------------------------------
    # Classification and submission
    # -----------------------------------------------------------------------

    def classify_next(self) -> Optional[Record]:
        """Classify the oldest new record. Returns None if there is none."""
        record = self.qualifier.next_unclassified()
        if record is None:
            logger.info("No records waiting for classification")
            return None
        return self.qualifier.classify_one(record)

    def classify_batch(self, limit: Optional[int] = None, workers: Optional[int] = None) -> dict:
        if workers is None:
            workers = self.config['CLASSIFY_WORKERS']
        return self.qualifier.classify_batch(limit=limit, workers=workers)

    def save_verdict(self, record_id: str, verdict: dict) -> Optional[Record]:
        """Apply a manual verdict. Returns None if the record doesn't exist."""
        record = self.store.get(record_id)
        if record is None:
            logger.warning("Record %s not found", record_id)
            return None
        return self.verdict_qualifier.save_verdict(record, verdict)

    def failed_submissions(self) -> list[Record]:
        return list_failed_submissions(self.store)

    def retry_failed(self) -> dict:
        return self.submitter.retry_failed()

    # -----------------------------------------------------------------------
    # Reconciliation
    # -----------------------------------------------------------------------

    def reconcile(self, campaign_id=None) -> dict:
        if not campaign_id:
            self._require('CAMPAIGN_ID')
            campaign_id = self.config['CAMPAIGN_ID']
        return self.reconciler.reconcile(numeric_id(campaign_id, 'CAMPAIGN_ID'))

    # -----------------------------------------------------------------------
    # Follow-ups
    # -----------------------------------------------------------------------

    def followup_next(self) -> Optional[Record]:
        """Draft a message for the next connected record without one."""
        record = self.followups.next_needing_draft()
        if record is None:
            logger.info("No connected records waiting for a draft")
            return None
        text = self.followups.generate_draft(record)
        self.followups.save_draft(record, text)
        return record

    def _with_record(self, record_id: str, action) -> bool:
        record = self.store.get(record_id)
        if record is None:
            logger.warning("Record %s not found", record_id)
            return False
        return action(record)

    def approve(self, record_id: str) -> bool:
        return self._with_record(record_id, self.followups.approve)

    def revise(self, record_id: str, text: str) -> bool:
        return self._with_record(record_id, lambda r: self.followups.revise(r, text))

    def mark_sent(self, record_id: str) -> bool:
        return self._with_record(record_id, self.followups.mark_sent)

    # -----------------------------------------------------------------------
    # Status
    # -----------------------------------------------------------------------

    def get_status(self) -> dict:
        """Get pipeline status. Reads only the store."""
        connected = self.store.query_by_stage(CONNECTED)
        return {
            'stages': self.store.count_by_stage(),
            'followups': {
                'awaiting_draft': sum(1 for r in connected if r.followup is None),
                'pending_review': sum(1 for r in connected if r.followup_state == 'drafted'),
                'ready_to_send': sum(1 for r in connected if r.followup_state == 'approved'),
                'sent': len(self.store.query_by_stage(READY)),
            },
            'failed_submissions': len(self.failed_submissions()),
            'quota': self.quota.status(),
            'recent_days': self.store.recent_days(7),
            'totals': self.store.get_totals(),
        }

    def run_daily(self, campaign_id=None) -> dict:
        """Scheduled run: classify, retry failed submissions, reconcile."""
        results = {
            'classification': self.classify_batch(),
            'retries': self.retry_failed(),
            'reconciliation': None,
        }
        results['reconciliation'] = self.reconcile(campaign_id)
        return results
