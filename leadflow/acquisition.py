"""
Acquisition stage: pull raw profiles from a source and store them as new records.

This stage never classifies or submits. It stops early when the daily
budget runs out, and a broken source item is counted and skipped rather
than retried.
"""

import itertools
import logging
import time
import uuid
from typing import Callable, Iterable, Optional

import requests

from leadflow.errors import ExtractionError
from leadflow.records import Record, NEW, normalize_identity

logger = logging.getLogger(__name__)


def record_from_fields(fields: dict) -> Record:
    """Build a new Record from extractor output."""
    url = (fields.get('url') or '').strip()
    return Record(
        id=uuid.uuid4().hex,
        external_id=url,
        name=fields.get('name', '') or '',
        title=fields.get('title', '') or '',
        company=fields.get('company', '') or '',
        location=fields.get('location', '') or '',
        about=fields.get('about', '') or '',
        experience=list(fields.get('experience') or []),
        education=list(fields.get('education') or []),
        source=dict(fields.get('source') or {}),
        stage=NEW,
    )


class AcquisitionStage:
    """Feeds the pipeline with new records, gated by the quota controller."""

    def __init__(self, store, quota, extractor, sleep: Callable[[float], None] = time.sleep):
        self.store = store
        self.quota = quota
        self.extractor = extractor
        self.sleep = sleep

    def acquire_batch(self, source: Iterable, max_count: Optional[int] = None) -> dict:
        """
        Walk the source in order and persist each extracted profile.

        Args:
            source: Iterable of source contexts understood by the extractor
            max_count: Stop after this many source items (None = until exhausted)

        Returns:
            Summary dict with counts and the newly created records
        """
        results = {
            'acquired': 0,
            'errors': 0,
            'duplicates': 0,
            'records': [],
            'stopped_reason': 'exhausted',
        }

        processed = 0
        # islice so a generator source is never advanced past max_count
        for ctx in itertools.islice(source, max_count):
            if not self.quota.can_acquire():
                logger.info("Daily acquisition limit reached, stopping early")
                results['stopped_reason'] = 'quota'
                break

            if processed > 0:
                delay = self.quota.next_delay()
                logger.debug("Waiting %.2fs before next acquisition", delay)
                self.sleep(delay)

            processed += 1
            self._acquire_one(ctx, results)
            self.quota.record_acquisition()

        if results['stopped_reason'] == 'exhausted' and max_count is not None and processed >= max_count:
            results['stopped_reason'] = 'max_count'

        logger.info(
            "Acquisition complete: %d new, %d duplicates, %d errors (%s)",
            results['acquired'], results['duplicates'], results['errors'], results['stopped_reason'],
        )
        return results

    def _acquire_one(self, ctx, results: dict) -> None:
        try:
            fields = self.extractor.fetch(ctx)
            if not normalize_identity(fields.get('url')):
                raise ExtractionError(f"No profile identity for {fields.get('name') or ctx!r}")
        except (ExtractionError, requests.RequestException) as e:
            logger.warning("Extraction failed: %s", e)
            results['errors'] += 1
            self.quota.record_error()
            return

        record = record_from_fields(fields)
        existing = self.store.find_by_identity(record.identity_key)
        if existing:
            logger.debug("Already tracked: %s (%s)", record.name, existing.stage)
            results['duplicates'] += 1
            return

        self.store.put(record)
        results['acquired'] += 1
        results['records'].append(record)
        logger.info("Acquired: %s (%s)", record.name, record.company)
