"""
AI classifier client.

The classifier receives a record plus the criteria document and returns
free text that should contain one JSON verdict. Parsing the verdict is
the qualification stage's job, not this module's.
"""

import logging
import os
from typing import Optional

import anthropic

from leadflow.errors import ClassifierError, ConfigError

logger = logging.getLogger(__name__)

VERDICT_INSTRUCTIONS = """Respond with a JSON object in this format:
{
  "decision": "TIER_1" | "TIER_2" | "SKIP",
  "score": 0-100,
  "reasoning": "Brief explanation (max 500 chars)",
  "strengths": ["2-5 short points, max 100 chars each"],
  "concerns": ["2-5 short points, max 100 chars each"],
  "recommendedApproach": "How to approach this lead (max 500 chars)"
}

Respond ONLY with the JSON object, no additional text."""


def load_criteria(path: str) -> str:
    """Read the criteria document. Missing or empty criteria is fatal."""
    if not path or not os.path.exists(path):
        raise ConfigError(f"Criteria file not found: {path or '(unset)'}")
    with open(path, 'r', encoding='utf-8') as f:
        text = f.read().strip()
    if not text:
        raise ConfigError(f"Criteria file is empty: {path}")
    return text


def build_prompt(record, criteria: str, feedback: Optional[list[str]] = None) -> str:
    """Build the classification prompt for one record."""
    experience = '\n'.join(
        f"- {e.get('title', '')} at {e.get('company', '')}"
        + (f" ({e['dates']})" if e.get('dates') else '')
        for e in record.experience
    ) or 'N/A'
    education = '\n'.join(
        f"- {e.get('degree', '')} from {e.get('school', '')}" for e in record.education
    ) or 'N/A'

    prompt = f"""You are a lead qualification expert. Decide whether this profile matches our ideal customer profile.

QUALIFICATION CRITERIA:
{criteria}

PROFILE TO ANALYZE:
Name: {record.name}
Title: {record.title}
Company: {record.company}
Location: {record.location}
About: {record.about or 'N/A'}

Experience:
{experience}

Education:
{education}

{VERDICT_INSTRUCTIONS}"""

    if feedback:
        problems = '\n'.join(f"- {item}" for item in feedback)
        prompt += f"\n\nYour previous answer was rejected:\n{problems}\nPlease shorten the text and answer again."

    return prompt


class AnthropicClassifier:
    """Classifier backed by the Anthropic Messages API."""

    def __init__(self, api_key: str, model: str, max_tokens: int = 1024, timeout: float = 30):
        if not api_key:
            raise ConfigError("ANTHROPIC_API_KEY is not set")
        self.model = model
        self.max_tokens = max_tokens
        self.client = anthropic.Anthropic(api_key=api_key, timeout=timeout, max_retries=0)

    def classify(self, record, criteria: str, feedback: Optional[list[str]] = None) -> str:
        prompt = build_prompt(record, criteria, feedback)
        try:
            message = self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                messages=[{'role': 'user', 'content': prompt}],
            )
        except anthropic.APIError as e:
            raise ClassifierError(f"Classifier API error: {e}") from e

        text = ''.join(
            block.text for block in message.content if getattr(block, 'type', '') == 'text'
        )
        if not text.strip():
            raise ClassifierError("Classifier returned an empty response")
        return text
