"""
People-search CSV exports as an acquisition source.

The export has gone through several column layouts, so each profile field
is resolved from an ordered list of candidate columns.
"""

import csv
import glob
import logging
import os
from typing import Optional

from leadflow.errors import ExtractionError

logger = logging.getLogger(__name__)

EXPORT_PATTERN = "Profiles downloaded from*.csv"

# field -> candidate columns, first non-empty wins
FIELD_RULES = {
    'name': ('full_name', ('first_name', 'last_name')),
    'title': ('headline', 'current_company_position'),
    'company': ('current_company', 'organization_1'),
    'location': ('location_name', 'location'),
    'url': ('profile_url', 'linkedin', 'url'),
    'about': ('summary', 'about'),
}

MAX_EXPERIENCE = 10
MAX_EDUCATION = 3


def _resolve(row: dict, candidates) -> str:
    for candidate in candidates:
        if isinstance(candidate, tuple):
            value = ' '.join((row.get(col) or '').strip() for col in candidate).strip()
        else:
            value = (row.get(candidate) or '').strip()
        if value:
            return value
    return ''


def _date_range(start: Optional[str], end: Optional[str]) -> str:
    if not start and not end:
        return ''
    if not end:
        return f"{start} - Present"
    return f"{start} - {end}"


def _experience(row: dict) -> list[dict]:
    entries = []
    for i in range(1, MAX_EXPERIENCE + 1):
        company = row.get(f'organization_{i}')
        title = row.get(f'organization_title_{i}')
        if not company and not title:
            continue
        entries.append({
            'company': company or 'Unknown',
            'title': title or 'Unknown',
            'dates': _date_range(row.get(f'organization_start_{i}'), row.get(f'organization_end_{i}')),
            'description': row.get(f'position_description_{i}') or '',
        })
    return entries


def _education(row: dict) -> list[dict]:
    entries = []
    for i in range(1, MAX_EDUCATION + 1):
        school = row.get(f'education_{i}')
        if not school:
            continue
        degree = row.get(f'education_degree_{i}')
        fos = row.get(f'education_fos_{i}')
        if degree:
            degree = f"{degree} - {fos}" if fos else degree
        else:
            degree = fos or 'Unknown'
        entries.append({
            'school': school,
            'degree': degree,
            'dates': _date_range(row.get(f'education_start_{i}'), row.get(f'education_end_{i}')),
        })
    return entries


class CsvExportExtractor:
    """Turns one CSV export row into extractor fields."""

    def fetch(self, row: dict) -> dict:
        if not isinstance(row, dict):
            raise ExtractionError(f"Expected a CSV row, got {type(row).__name__}")

        fields = {name: _resolve(row, candidates) for name, candidates in FIELD_RULES.items()}
        if not fields['url']:
            raise ExtractionError(f"Row for '{fields['name'] or 'unknown'}' has no profile URL")

        fields['name'] = fields['name'] or 'Unknown'
        fields['experience'] = _experience(row)
        fields['education'] = _education(row)
        fields['source'] = {
            'id': row.get('id', ''),
            'public_id': row.get('public_id', ''),
            'industry': row.get('industry', ''),
            'connections_count': row.get('connections_count', ''),
        }
        return fields


def find_latest_export(directory: str) -> Optional[str]:
    """Newest CSV export in a directory (by file name timestamp, then mtime)."""
    paths = glob.glob(os.path.join(directory, EXPORT_PATTERN))
    if not paths:
        return None
    return max(paths, key=lambda p: (os.path.basename(p), os.path.getmtime(p)))


def read_export_rows(path: str) -> list[dict]:
    """Read every non-empty row of a CSV export."""
    with open(path, newline='', encoding='utf-8-sig') as f:
        reader = csv.DictReader(f)
        rows = [row for row in reader if any((v or '').strip() for v in row.values() if isinstance(v, str))]
    logger.info("Loaded %d rows from %s", len(rows), path)
    return rows
