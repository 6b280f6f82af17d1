"""
Classification stage.

Takes `new` records, asks the classifier for a verdict and moves each
record to `qualified` or `disqualified`. Qualified records are handed to
the submitter straight away.

Verdicts come back as free text. The first balanced JSON object in the
text is the verdict; anything around it is ignored.
"""

import json
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Optional

from leadflow.errors import ClassifierError, VerdictParseError, VerdictValidationError
from leadflow.pacing import today_utc
from leadflow.records import Record, NEW, QUALIFIED, DISQUALIFIED, utcnow_iso
from leadflow.submission import default_owner, worker_owner

logger = logging.getLogger(__name__)

# verdict field -> keys tried in order
VERDICT_FIELDS = {
    'decision': ('decision', 'tier', 'qualified'),
    'score': ('score',),
    'reasoning': ('reasoning', 'reason'),
    'strengths': ('strengths', 'pros'),
    'concerns': ('concerns', 'cons'),
    'approach': ('recommendedApproach', 'recommended_approach', 'approach'),
}

PROSE_FIELDS = ('reasoning', 'approach')
LIST_FIELDS = ('strengths', 'concerns')


@dataclass
class VerdictLimits:
    max_prose_chars: int = 500
    max_list_items: int = 5
    max_list_item_chars: int = 100


def extract_json_block(text: str) -> Optional[str]:
    """
    Return the first balanced {...} block in text, or None.

    Braces inside JSON strings (including escaped quotes) don't count.
    """
    if not text:
        return None

    start = text.find('{')
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == '\\':
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == '{':
                depth += 1
            elif ch == '}':
                depth -= 1
                if depth == 0:
                    return text[start:i + 1]
        start = text.find('{', start + 1)
    return None


def _first_present(data: dict, keys):
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return None


def parse_verdict(text: str) -> dict:
    """
    Parse classifier output into a normalized verdict dict.

    Raises:
        VerdictParseError: no JSON, invalid JSON or wrongly typed fields
    """
    block = extract_json_block(text)
    if block is None:
        raise VerdictParseError("No JSON object found in classifier response")
    try:
        data = json.loads(block)
    except json.JSONDecodeError as e:
        raise VerdictParseError(f"Invalid JSON in classifier response: {e}") from e
    if not isinstance(data, dict):
        raise VerdictParseError("Classifier verdict is not a JSON object")

    verdict = {name: _first_present(data, keys) for name, keys in VERDICT_FIELDS.items()}

    decision = verdict['decision']
    if isinstance(decision, bool):
        decision = QUALIFIED.upper() if decision else DISQUALIFIED.upper()
    if not isinstance(decision, str) or not decision.strip():
        raise VerdictParseError("Verdict has no decision")
    verdict['decision'] = decision.strip()

    score = verdict['score']
    if score is not None and (isinstance(score, bool) or not isinstance(score, (int, float))):
        raise VerdictParseError(f"Verdict score is not a number: {score!r}")

    for name in PROSE_FIELDS:
        value = verdict[name]
        if value is None:
            verdict[name] = ''
        elif not isinstance(value, str):
            raise VerdictParseError(f"Verdict field '{name}' is not text")

    for name in LIST_FIELDS:
        value = verdict[name]
        if value is None:
            verdict[name] = []
        elif not isinstance(value, list) or not all(isinstance(item, str) for item in value):
            raise VerdictParseError(f"Verdict field '{name}' is not a list of strings")

    return verdict


def validate_verdict(verdict: dict, limits: VerdictLimits) -> list[str]:
    """Return every length-limit violation in a parsed verdict."""
    errors = []
    for name in PROSE_FIELDS:
        value = verdict.get(name) or ''
        if len(value) > limits.max_prose_chars:
            errors.append(f"{name} is {len(value)} chars (max {limits.max_prose_chars})")
    for name in LIST_FIELDS:
        items = verdict.get(name) or []
        if len(items) > limits.max_list_items:
            errors.append(f"{name} has {len(items)} items (max {limits.max_list_items})")
        for i, item in enumerate(items):
            if len(item) > limits.max_list_item_chars:
                errors.append(
                    f"{name}[{i}] is {len(item)} chars (max {limits.max_list_item_chars})"
                )
    return errors


def error_verdict(message: str) -> dict:
    return {
        'decision': 'SKIP',
        'score': 0,
        'reasoning': message,
        'strengths': [],
        'concerns': [],
        'approach': '',
        'error': True,
    }


class Qualifier:
    """Runs records through the classifier and applies the verdicts."""

    def __init__(
        self,
        store,
        classifier,
        criteria: str,
        submitter=None,
        qualifying_decisions=('TIER_1', 'TIER_2', 'QUALIFIED'),
        min_score: Optional[float] = 60,
        limits: Optional[VerdictLimits] = None,
        max_attempts: int = 2,
        owner: Optional[str] = None,
        lease_seconds: float = 120,
    ):
        self.store = store
        # None when the qualifier only records verdicts supplied from outside
        self.classifier = classifier
        self.criteria = criteria
        self.submitter = submitter
        self.qualifying_decisions = {d.strip().upper() for d in qualifying_decisions}
        self.min_score = min_score
        self.limits = limits or VerdictLimits()
        self.max_attempts = max(1, max_attempts)
        self.owner = owner or default_owner()
        self.lease_seconds = lease_seconds

    def is_qualifying(self, verdict: dict) -> bool:
        if verdict['decision'].upper() not in self.qualifying_decisions:
            return False
        score = verdict.get('score')
        if score is None or self.min_score is None:
            return True
        return score >= self.min_score

    def next_unclassified(self) -> Optional[Record]:
        """Oldest record still waiting for a verdict."""
        pending = self.store.query_by_stage(NEW)
        return pending[0] if pending else None

    def _ask(self, record: Record) -> Optional[dict]:
        """
        Get a verdict that passes validation.

        Returns None when every attempt broke the limits. Classifier and
        parse failures come back as a synthesized SKIP verdict.
        """
        feedback = None
        for attempt in range(1, self.max_attempts + 1):
            text = None
            try:
                text = self.classifier.classify(record, self.criteria, feedback)
                verdict = parse_verdict(text)
            except ClassifierError as e:
                logger.error("Classifier failed for %s: %s", record.name, e)
                return error_verdict(str(e))
            except VerdictParseError as e:
                logger.error("Unparseable verdict for %s: %s. Raw response: %r", record.name, e, text)
                return error_verdict(str(e))

            errors = validate_verdict(verdict, self.limits)
            if not errors:
                return verdict

            logger.warning(
                "Verdict for %s rejected (attempt %d/%d): %s",
                record.name, attempt, self.max_attempts, "; ".join(errors),
            )
            feedback = errors
        return None

    def _apply(self, record: Record, verdict: dict) -> Record:
        """Store a verdict on a claimed record and move it on."""
        classification = dict(verdict)
        classification['classified_at'] = utcnow_iso()
        classification.setdefault('error', False)

        record.classification = classification
        record.classification_history.append(dict(classification))
        qualified = not classification['error'] and self.is_qualifying(verdict)
        record.stage = QUALIFIED if qualified else DISQUALIFIED
        self.store.put(record)

        day = today_utc()
        self.store.increment_counter(day, record.stage)
        if classification['error']:
            self.store.increment_counter(day, 'errors')

        logger.info(
            "%s %s: %s (score %s)",
            "Qualified" if qualified else "Disqualified",
            record.name, verdict['decision'], verdict.get('score'),
        )
        return record

    def _submit(self, record: Record) -> Record:
        if record.stage == QUALIFIED and self.submitter is not None:
            return self.submitter.submit(record)
        return record

    def _classify(self, record: Record) -> tuple[Record, str]:
        if record.stage != NEW:
            logger.debug("Skipping %s: already %s", record.id, record.stage)
            return record, 'skipped'

        owner = worker_owner(self.owner)
        if not self.store.claim(record.id, owner, self.lease_seconds):
            logger.info("Record %s is claimed by another worker, skipping", record.id)
            return record, 'skipped'

        try:
            current = self.store.get(record.id) or record
            if current.stage != NEW:
                return current, 'skipped'

            verdict = self._ask(current)
            if verdict is None:
                logger.warning("No valid verdict for %s, leaving it for a later run", current.name)
                return current, 'rejected'

            current = self._apply(current, verdict)
            outcome = 'failed' if verdict.get('error') else 'succeeded'
        finally:
            self.store.release(record.id, owner)

        return self._submit(current), outcome

    def classify_one(self, record: Record) -> Record:
        """Classify one `new` record. Never raises for classifier trouble."""
        updated, _ = self._classify(record)
        return updated

    def save_verdict(self, record: Record, verdict: dict) -> Record:
        """
        Apply an externally supplied verdict to a `new` record.

        Raises:
            VerdictParseError: verdict is malformed
            VerdictValidationError: verdict breaks the length limits
        """
        parsed = parse_verdict(json.dumps(verdict))
        errors = validate_verdict(parsed, self.limits)
        if errors:
            raise VerdictValidationError(errors)

        if record.stage != NEW:
            logger.info("Not saving verdict for %s: already %s", record.id, record.stage)
            return record
        owner = worker_owner(self.owner)
        if not self.store.claim(record.id, owner, self.lease_seconds):
            logger.info("Record %s is claimed by another worker, not saving verdict", record.id)
            return record

        try:
            current = self.store.get(record.id) or record
            if current.stage != NEW:
                return current
            current = self._apply(current, parsed)
        finally:
            self.store.release(record.id, owner)

        return self._submit(current)

    def classify_batch(self, limit: Optional[int] = None, workers: int = 1) -> dict:
        """
        Classify pending records, oldest first.

        Returns:
            Counts of each outcome plus how many ended up submitted
        """
        pending = self.store.query_by_stage(NEW)
        if limit is not None:
            pending = pending[:limit]

        results = {
            'succeeded': 0,
            'failed': 0,
            'skipped': 0,
            'qualified': 0,
            'disqualified': 0,
            'submitted': 0,
            'rejected': 0,
        }
        if not pending:
            logger.info("No records waiting for classification")
            return results

        logger.info("Classifying %d records with %d worker(s)", len(pending), workers)
        if workers > 1:
            with ThreadPoolExecutor(max_workers=workers) as pool:
                outcomes = list(pool.map(self._classify, pending))
        else:
            outcomes = [self._classify(record) for record in pending]

        for record, outcome in outcomes:
            results[outcome] += 1
            if outcome in ('succeeded', 'failed'):
                if record.stage == DISQUALIFIED:
                    results['disqualified'] += 1
                else:
                    results['qualified'] += 1
            if record.is_submitted:
                results['submitted'] += 1

        logger.info(
            "Classification complete: %d qualified, %d disqualified, %d errors, %d rejected, %d skipped",
            results['qualified'], results['disqualified'], results['failed'],
            results['rejected'], results['skipped'],
        )
        return results
