"""
Campaign service (HeyReach) integration.

Two endpoints are used:
- AddLeadsToListV2: push a qualified lead into the list feeding a campaign
- GetLeadsFromCampaign: page through a campaign's leads and their status

The service has returned several payload shapes over time, so fields are
read through ordered lookup tables rather than fixed keys.
"""

import logging
import time
from typing import Iterator, Optional

import requests

from leadflow.errors import CampaignAPIError

logger = logging.getLogger(__name__)

# Where a lead's profile URL may live, in order of preference
LEAD_IDENTITY_PATHS = (
    ('linkedInUserProfile', 'profileUrl'),
    ('linkedInUserProfile', 'profile_url'),
    ('profileUrl',),
    ('profile_url',),
)

# Where AddLead responses put the created lead id
RESPONSE_ID_PATHS = (
    ('id',),
    ('leadId',),
    ('leads', 0, 'id'),
)

RATE_LIMIT_BACKOFF_SECONDS = 60


def resolve_field(payload, paths):
    """Return the first non-empty value found along the given key paths."""
    for path in paths:
        value = payload
        for key in path:
            if isinstance(key, int):
                if isinstance(value, list) and len(value) > key:
                    value = value[key]
                else:
                    value = None
                    break
            elif isinstance(value, dict):
                value = value.get(key)
            else:
                value = None
                break
        if value not in (None, ''):
            return value
    return None


def to_campaign_lead(record) -> dict:
    """Map a record onto the campaign service's lead schema."""
    return {
        'firstName': record.first_name,
        'lastName': record.last_name,
        'location': record.location or '',
        'summary': record.title or '',
        'companyName': record.company or '',
        'position': record.title or '',
        'about': record.about or '',
        # not available from the source
        'emailAddress': '',
        'profileUrl': record.external_id,
    }


class CampaignClient:
    """Thin HTTP client for the campaign service."""

    def __init__(self, api_key: str, base_url: str, timeout: float = 30, sleep=time.sleep):
        self.api_key = api_key
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.sleep = sleep

    def _post(self, endpoint: str, body: dict, retry_on_rate_limit: bool = False) -> dict:
        url = f"{self.base_url}{endpoint}"
        headers = {
            'X-API-KEY': self.api_key,
            'Content-Type': 'application/json',
            'Accept': 'application/json',
        }
        try:
            resp = requests.post(url, json=body, headers=headers, timeout=self.timeout)
        except requests.RequestException as exc:
            raise CampaignAPIError(f"Campaign service request failed: {exc}") from exc

        if resp.status_code == 429 and retry_on_rate_limit:
            logger.warning("Campaign service rate limit hit, backing off %ds", RATE_LIMIT_BACKOFF_SECONDS)
            self.sleep(RATE_LIMIT_BACKOFF_SECONDS)
            return self._post(endpoint, body, retry_on_rate_limit=False)

        if not 200 <= resp.status_code < 300:
            raise CampaignAPIError(
                f"Campaign service error ({resp.status_code}): {resp.text[:500]}",
                status=resp.status_code,
            )

        if not resp.content or not resp.content.strip():
            return {}
        try:
            data = resp.json()
        except ValueError:
            logger.warning("Non-JSON response from %s: %s", endpoint, resp.text[:200])
            return {}
        return data if isinstance(data, dict) else {'items': data}

    def add_lead(self, lead: dict, list_id) -> dict:
        """Add one lead to a list. Raises CampaignAPIError on failure."""
        try:
            list_id = int(list_id)
        except (TypeError, ValueError):
            raise CampaignAPIError(f"Invalid list id: {list_id!r}")
        return self._post('/list/AddLeadsToListV2', {'leads': [lead], 'listId': list_id})

    def list_campaign_leads(self, campaign_id, offset: int = 0, limit: int = 100) -> dict:
        """One page of campaign leads: {'items': [...], 'totalCount': n}."""
        body = {
            'campaignId': int(campaign_id),
            'offset': offset,
            'limit': limit,
            'timeFilter': 'Everywhere',
        }
        logger.debug("Fetching leads from campaign %s, offset %d", campaign_id, offset)
        return self._post('/campaign/GetLeadsFromCampaign', body, retry_on_rate_limit=True)

    def iter_campaign_leads(self, campaign_id, page_size: int = 100) -> Iterator[dict]:
        """
        Yield every lead in a campaign.

        Stops on an empty page, a short page, or once the declared total is
        reached. The declared total is not always reliable, so both checks
        are kept.
        """
        offset = 0
        fetched = 0
        while True:
            page = self.list_campaign_leads(campaign_id, offset, page_size)
            items = page.get('items') or []
            if not items:
                break

            for item in items:
                yield item
            fetched += len(items)

            total = page.get('totalCount') or 0
            if total and fetched >= total:
                break
            if len(items) < page_size:
                break
            offset += page_size

        logger.info("Fetched %d leads from campaign %s", fetched, campaign_id)


def lead_identity(lead) -> Optional[str]:
    """Profile URL of a campaign lead, or None for unrecognised payloads."""
    if not isinstance(lead, dict):
        return None
    value = resolve_field(lead, LEAD_IDENTITY_PATHS)
    return value if isinstance(value, str) else None
