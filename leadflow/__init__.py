"""
Lead lifecycle pipeline.

This package handles:
- Acquiring profiles within a paced daily budget
- Classifying them with an AI classifier
- Submitting qualified leads to an outreach campaign
- Reconciling accepted connections
- Drafting and approving follow-up messages
"""

from leadflow.config import LEAD_CONFIG
from leadflow.db import SQLiteRecordStore, MemoryRecordStore
from leadflow.errors import (
    LeadflowError,
    ConfigError,
    ExtractionError,
    ClassifierError,
    VerdictParseError,
    VerdictValidationError,
    CampaignAPIError,
)
from leadflow.manager import LeadManager
from leadflow.records import Record, normalize_identity
from leadflow.summary import generate_summary_text

__all__ = [
    'LEAD_CONFIG',
    'SQLiteRecordStore',
    'MemoryRecordStore',
    'LeadflowError',
    'ConfigError',
    'ExtractionError',
    'ClassifierError',
    'VerdictParseError',
    'VerdictValidationError',
    'CampaignAPIError',
    'LeadManager',
    'Record',
    'normalize_identity',
    'generate_summary_text',
]
