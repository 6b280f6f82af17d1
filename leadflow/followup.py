"""
Follow-up messages for accepted connections.

Flow for a `connected` record:
    draft -> (revise ->) approve -> mark sent -> stage `ready`

Nothing here advances on its own. Every transition is an explicit call,
and a call whose precondition doesn't hold is logged and ignored.
"""

import logging
import os
from typing import Callable, Optional

from jinja2 import Environment, FileSystemLoader, TemplateNotFound

from leadflow.config import LEAD_CONFIG
from leadflow.records import Record, CONNECTED, READY, utcnow_iso

logger = logging.getLogger(__name__)

TEMPLATE_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "templates")
TEMPLATE_NAME = "followup_message.txt"

_env = None


def _get_env() -> Environment:
    """Get or create Jinja2 environment."""
    global _env
    if _env is None:
        _env = Environment(loader=FileSystemLoader(TEMPLATE_DIR), keep_trailing_newline=True)
    return _env


def _get_sender_info() -> dict:
    return {
        'sender_name': LEAD_CONFIG.get('SENDER_NAME') or 'Your Name',
        'sender_company': LEAD_CONFIG.get('SENDER_COMPANY', ''),
    }


def build_context(record: Record) -> dict:
    classification = record.classification or {}
    return {
        **_get_sender_info(),
        'first_name': record.first_name or 'there',
        'name': record.name,
        'company': record.company,
        'title': record.title,
        'approach': classification.get('approach', ''),
        'strengths': classification.get('strengths') or [],
    }


def _render_fallback(context: dict) -> str:
    """Inline template used when the template file is missing."""
    lines = [f"Hi {context['first_name']},", "", "Thanks for connecting!"]
    if context['company']:
        lines.append("")
        lines.append(f"I came across your work at {context['company']} and thought it would be good to be in touch.")
    lines.extend([
        "",
        "Would you be open to a quick chat in the next couple of weeks?",
        "",
        "Best,",
        context['sender_name'],
    ])
    if context['sender_company']:
        lines.append(context['sender_company'])
    return "\n".join(lines) + "\n"


def render_followup(record: Record) -> str:
    """Render the follow-up draft for a record."""
    context = build_context(record)
    try:
        template = _get_env().get_template(TEMPLATE_NAME)
        return template.render(**context)
    except TemplateNotFound:
        logger.warning("Template %s not found, using inline fallback", TEMPLATE_NAME)
        return _render_fallback(context)


class FollowupDesk:
    """Drafting and approval of follow-up messages."""

    def __init__(self, store, renderer: Optional[Callable[[Record], str]] = None):
        self.store = store
        self.renderer = renderer or render_followup

    def next_needing_draft(self) -> Optional[Record]:
        for record in self.store.query_by_stage(CONNECTED):
            if record.followup is None:
                return record
        return None

    def generate_draft(self, record: Record) -> str:
        return self.renderer(record)

    def save_draft(self, record: Record, text: str) -> bool:
        if record.stage != CONNECTED or record.followup is not None:
            logger.warning(
                "Cannot draft for %s: stage=%s, followup=%s",
                record.id, record.stage, record.followup_state,
            )
            return False
        record.followup = {
            'text': text,
            'generated_at': utcnow_iso(),
            'approved': False,
            'approved_at': None,
            'sent': False,
            'sent_at': None,
        }
        self.store.put(record)
        logger.info("Drafted follow-up for %s", record.name)
        return True

    def approve(self, record: Record) -> bool:
        if not record.followup:
            logger.warning("Cannot approve %s: no draft", record.id)
            return False
        if record.followup.get('sent'):
            logger.warning("Cannot approve %s: already sent", record.id)
            return False
        record.followup['approved'] = True
        record.followup['approved_at'] = utcnow_iso()
        self.store.put(record)
        logger.info("Approved follow-up for %s", record.name)
        return True

    def revise(self, record: Record, text: str) -> bool:
        """Replace the draft text. Any earlier approval is withdrawn."""
        if not record.followup:
            logger.warning("Cannot revise %s: no draft", record.id)
            return False
        if record.followup.get('sent'):
            logger.warning("Cannot revise %s: already sent", record.id)
            return False
        record.followup['text'] = text
        record.followup['revised_at'] = utcnow_iso()
        record.followup['approved'] = False
        record.followup['approved_at'] = None
        self.store.put(record)
        logger.info("Revised follow-up for %s", record.name)
        return True

    def mark_sent(self, record: Record) -> bool:
        if record.stage != CONNECTED or not record.followup or not record.followup.get('approved'):
            logger.warning(
                "Cannot mark %s sent: stage=%s, followup=%s",
                record.id, record.stage, record.followup_state,
            )
            return False
        record.followup['sent'] = True
        record.followup['sent_at'] = utcnow_iso()
        record.stage = READY
        self.store.put(record)
        logger.info("Follow-up sent to %s", record.name)
        return True

    def pending_review(self) -> list[Record]:
        return [
            r for r in self.store.query_by_stage(CONNECTED)
            if r.followup and not r.followup.get('approved')
        ]

    def ready_to_send(self) -> list[Record]:
        return [
            r for r in self.store.query_by_stage(CONNECTED)
            if r.followup and r.followup.get('approved') and not r.followup.get('sent')
        ]
