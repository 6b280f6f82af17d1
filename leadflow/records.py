"""
Lead records and their lifecycle stages.

A record moves through:
    new -> qualified | disqualified -> submitted -> connected -> ready

A failed campaign submission leaves the record in `qualified` with an
error recorded on `campaign_ref`, so it can be retried. Follow-up drafting
and approval happen while the record sits in `connected`.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import urlsplit, urlunsplit

NEW = 'new'
QUALIFIED = 'qualified'
DISQUALIFIED = 'disqualified'
SUBMITTED = 'submitted'
CONNECTED = 'connected'
READY = 'ready'

STAGES = [NEW, QUALIFIED, DISQUALIFIED, SUBMITTED, CONNECTED, READY]

_STAGE_RANK = {
    NEW: 0,
    QUALIFIED: 1,
    DISQUALIFIED: 1,
    SUBMITTED: 2,
    CONNECTED: 3,
    READY: 4,
}


def stage_rank(stage: str) -> int:
    """Position of a stage in the lifecycle. Unknown stages rank lowest."""
    return _STAGE_RANK.get(stage, -1)


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def normalize_identity(value: Optional[str]) -> str:
    """
    Normalize an external identity (usually a profile URL) for comparison.

    Lowercases scheme and host and strips trailing slashes. The path,
    query and fragment keep their case.
    """
    if not value:
        return ""
    value = value.strip()
    parts = urlsplit(value)
    if parts.scheme and parts.netloc:
        path = parts.path.rstrip('/')
        return urlunsplit((
            parts.scheme.lower(),
            parts.netloc.lower(),
            path,
            parts.query,
            parts.fragment,
        ))
    return value.rstrip('/')


@dataclass
class Record:
    """One discovered person and their progress through the pipeline."""
    id: str
    external_id: str = ""
    identity_key: str = ""
    name: str = ""
    title: str = ""
    company: str = ""
    location: str = ""
    about: str = ""
    experience: list = field(default_factory=list)
    education: list = field(default_factory=list)
    source: dict = field(default_factory=dict)
    stage: str = NEW
    classification: Optional[dict] = None
    classification_history: list = field(default_factory=list)
    campaign_ref: Optional[dict] = None
    acceptance: Optional[dict] = None
    followup: Optional[dict] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def __post_init__(self):
        if not self.identity_key:
            self.identity_key = normalize_identity(self.external_id)

    @property
    def first_name(self) -> str:
        parts = (self.name or "").split(None, 1)
        return parts[0] if parts else ""

    @property
    def last_name(self) -> str:
        parts = (self.name or "").split(None, 1)
        return parts[1] if len(parts) > 1 else ""

    @property
    def is_submitted(self) -> bool:
        return bool(self.campaign_ref and self.campaign_ref.get('submitted') is True)

    @property
    def submission_failed(self) -> bool:
        ref = self.campaign_ref
        return bool(ref and ref.get('submitted') is False and ref.get('error'))

    @property
    def followup_state(self) -> Optional[str]:
        if not self.followup:
            return None
        if self.followup.get('sent'):
            return 'sent'
        if self.followup.get('approved'):
            return 'approved'
        return 'drafted'

    # JSON-backed columns, shared by the SQLite store
    _JSON_FIELDS = (
        'experience', 'education', 'source', 'classification',
        'classification_history', 'campaign_ref', 'acceptance', 'followup',
    )

    def to_row(self) -> dict:
        row = {
            'id': self.id,
            'external_id': self.external_id,
            'identity_key': self.identity_key,
            'name': self.name,
            'title': self.title,
            'company': self.company,
            'location': self.location,
            'about': self.about,
            'stage': self.stage,
            'created_at': self.created_at,
            'updated_at': self.updated_at,
        }
        for name in self._JSON_FIELDS:
            row[f'{name}_json'] = json.dumps(getattr(self, name))
        return row

    @classmethod
    def from_row(cls, row: dict) -> "Record":
        kwargs = {
            key: row.get(key)
            for key in (
                'id', 'external_id', 'identity_key', 'name', 'title', 'company',
                'location', 'about', 'stage', 'created_at', 'updated_at',
            )
        }
        for key in ('external_id', 'identity_key', 'name', 'title', 'company', 'location', 'about'):
            kwargs[key] = kwargs[key] or ""
        for name in cls._JSON_FIELDS:
            raw = row.get(f'{name}_json')
            if raw:
                kwargs[name] = json.loads(raw)
        return cls(**{k: v for k, v in kwargs.items() if v is not None})

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'external_id': self.external_id,
            'identity_key': self.identity_key,
            'name': self.name,
            'title': self.title,
            'company': self.company,
            'location': self.location,
            'about': self.about,
            'experience': self.experience,
            'education': self.education,
            'source': self.source,
            'stage': self.stage,
            'classification': self.classification,
            'classification_history': self.classification_history,
            'campaign_ref': self.campaign_ref,
            'acceptance': self.acceptance,
            'followup': self.followup,
            'created_at': self.created_at,
            'updated_at': self.updated_at,
        }
