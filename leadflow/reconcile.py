"""
Acceptance reconciliation.

Pulls the campaign's lead list and moves every submitted record whose
connection was accepted to `connected`. Records are only touched after
the whole list has been fetched, so a listing failure changes nothing.
"""

import logging

from leadflow.campaign import lead_identity
from leadflow.records import CONNECTED, SUBMITTED, normalize_identity, stage_rank, utcnow_iso

logger = logging.getLogger(__name__)


class AcceptanceReconciler:
    """Matches accepted campaign leads back to stored records."""

    def __init__(self, store, client, accepted_status: str = 'ConnectionAccepted', page_size: int = 100):
        self.store = store
        self.client = client
        self.accepted_status = accepted_status
        self.page_size = page_size

    def reconcile(self, campaign_id) -> dict:
        """
        Mark accepted leads as connected.

        Raises:
            CampaignAPIError: the campaign listing failed
        """
        leads = list(self.client.iter_campaign_leads(campaign_id, self.page_size))

        results = {
            'matched': 0,
            'already_tracked': 0,
            'unmatched': 0,
            'not_submitted': 0,
            'malformed': 0,
            'total_leads': len(leads),
            'accepted_leads': 0,
        }

        for lead in leads:
            if not isinstance(lead, dict):
                logger.warning("Malformed campaign lead: %r", lead)
                results['malformed'] += 1
                continue
            if lead.get('leadConnectionStatus') != self.accepted_status:
                continue

            results['accepted_leads'] += 1
            identity = normalize_identity(lead_identity(lead))
            if not identity:
                logger.warning("Accepted lead without a profile URL: %r", lead)
                results['malformed'] += 1
                continue

            record = self.store.find_by_identity(identity)
            if record is None:
                logger.info("Accepted lead not tracked locally: %s", identity)
                results['unmatched'] += 1
                continue

            if stage_rank(record.stage) >= stage_rank(CONNECTED):
                results['already_tracked'] += 1
                continue

            if record.stage != SUBMITTED:
                logger.warning(
                    "Accepted lead %s is still '%s' locally, not marking connected",
                    record.name, record.stage,
                )
                results['not_submitted'] += 1
                continue

            record.acceptance = {
                'accepted_at': utcnow_iso(),
                'external_id': lead.get('id'),
            }
            record.stage = CONNECTED
            self.store.put(record)
            results['matched'] += 1
            logger.info("Connection accepted: %s", record.name)

        logger.info(
            "Reconciled campaign %s: %d accepted, %d newly connected, %d already tracked, "
            "%d unmatched, %d not submitted, %d malformed",
            campaign_id, results['accepted_leads'], results['matched'], results['already_tracked'],
            results['unmatched'], results['not_submitted'], results['malformed'],
        )
        return results
