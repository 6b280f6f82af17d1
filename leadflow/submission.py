"""
Campaign submission stage.

Each qualified record is submitted to the campaign service at most once.
Failures are written onto the record rather than raised, and are only
retried when an operator (or the scheduled run) asks for it.
"""

import logging
import os
import socket
import threading
from typing import Optional

from leadflow.campaign import RESPONSE_ID_PATHS, resolve_field, to_campaign_lead
from leadflow.errors import CampaignAPIError
from leadflow.records import Record, QUALIFIED, SUBMITTED, utcnow_iso

logger = logging.getLogger(__name__)


def default_owner() -> str:
    """Claim owner name for this process."""
    return f"{socket.gethostname()}:{os.getpid()}"


def worker_owner(base: str) -> str:
    """Claim owner for the calling thread, so pool workers exclude each other."""
    return f"{base}/{threading.current_thread().name}"


def list_failed_submissions(store) -> list[Record]:
    """Qualified records whose last submission attempt failed."""
    return [r for r in store.query_by_stage(QUALIFIED) if r.submission_failed]


class CampaignSubmitter:
    """Pushes qualified records into the campaign list."""

    def __init__(
        self,
        store,
        client,
        list_id,
        owner: Optional[str] = None,
        lease_seconds: float = 120,
    ):
        self.store = store
        self.client = client
        self.list_id = list_id
        self.owner = owner or default_owner()
        self.lease_seconds = lease_seconds

    @staticmethod
    def _can_submit(record: Record) -> bool:
        return record.stage == QUALIFIED and not record.is_submitted

    def submit(self, record: Record) -> Record:
        """
        Submit a qualified record once.

        Returns the record unchanged if it was already submitted, is not
        qualified, or another worker holds it.
        """
        if not self._can_submit(record):
            logger.debug("Not submitting %s (stage=%s, submitted=%s)", record.id, record.stage, record.is_submitted)
            return record

        owner = worker_owner(self.owner)
        if not self.store.claim(record.id, owner, self.lease_seconds):
            logger.info("Record %s is being processed elsewhere, skipping submission", record.id)
            return record

        try:
            current = self.store.get(record.id) or record
            if not self._can_submit(current):
                return current

            lead = to_campaign_lead(current)
            try:
                response = self.client.add_lead(lead, self.list_id)
            except CampaignAPIError as e:
                current.campaign_ref = {
                    'submitted': False,
                    'error': str(e),
                    'status': e.status,
                    'attempted_at': utcnow_iso(),
                }
                self.store.put(current)
                logger.error("Failed to submit %s to campaign: %s", current.name, e)
                return current

            external_id = resolve_field(response, RESPONSE_ID_PATHS) or current.identity_key
            current.campaign_ref = {
                'submitted': True,
                'sent_at': utcnow_iso(),
                'external_id': str(external_id),
                'list_id': str(self.list_id),
            }
            current.stage = SUBMITTED
            self.store.put(current)
            logger.info("Submitted %s to campaign list %s", current.name, self.list_id)
            return current
        finally:
            self.store.release(record.id, owner)

    def list_failed_submissions(self) -> list[Record]:
        return list_failed_submissions(self.store)

    def retry_failed(self, limit: Optional[int] = None) -> dict:
        """Explicitly retry failed submissions."""
        failed = self.list_failed_submissions()
        if limit is not None:
            failed = failed[:limit]

        results = {'succeeded': 0, 'failed': 0, 'skipped': 0}
        for record in failed:
            updated = self.submit(record)
            if updated.is_submitted:
                results['succeeded'] += 1
            elif updated.campaign_ref and updated.campaign_ref.get('attempted_at') != record.campaign_ref.get('attempted_at'):
                results['failed'] += 1
            else:
                results['skipped'] += 1

        logger.info(
            "Retry complete: %d submitted, %d failed, %d skipped",
            results['succeeded'], results['failed'], results['skipped'],
        )
        return results
