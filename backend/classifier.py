import json
import logging
from typing import Optional

import anthropic

from models import Priority, TaskProposal, parse_priority
from prompts import CHAT_RUBRIC

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-5"


class ClassificationError(Exception):
    """The model could not turn the text into at least one task."""


def extract_json_array(text: str) -> Optional[list]:
    """
    Return the first JSON array embedded in text, or None.
    The model may wrap the array in prose or a Markdown code fence,
    so every '[' is tried as a starting point until one decodes to a list.
    """
    decoder = json.JSONDecoder()
    start = text.find("[")
    while start != -1:
        try:
            value, _ = decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            value = None
        if isinstance(value, list):
            return value
        start = text.find("[", start + 1)
    return None


def normalize_proposals(items: list) -> list[TaskProposal]:
    """
    Turn raw model output into proposals.
    Items without a title are dropped; unknown priorities become IDEA.
    """
    proposals = []
    for item in items:
        if not isinstance(item, dict):
            continue
        title = str(item.get("title") or "").strip()
        if not title:
            continue
        category = item.get("category")
        category = str(category).strip() if category else None
        priority = parse_priority(item.get("priority")) or Priority.IDEA
        proposals.append(TaskProposal(title=title, category=category or None, priority=priority))
    return proposals


class TaskClassifier:
    """Single-shot task extraction over the Anthropic Messages API."""

    def __init__(self, client: Optional[anthropic.AsyncAnthropic], model: str = DEFAULT_MODEL, max_tokens: int = 1024):
        self.client = client
        self.model = model
        self.max_tokens = max_tokens

    async def complete(self, text: str, rubric: str) -> str:
        if self.client is None:
            raise ClassificationError("API key not configured")
        try:
            response = await self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                system=rubric,
                messages=[{"role": "user", "content": text}]
            )
        except anthropic.APIError as e:
            raise ClassificationError(f"API error: {e}") from e

        ai_text = "".join(
            block.text for block in response.content if getattr(block, "type", "text") == "text"
        )
        logger.debug("Classifier response: %s", ai_text)
        return ai_text

    async def classify(self, text: str, rubric: str = CHAT_RUBRIC) -> list[TaskProposal]:
        """Classify text into tasks. Raises ClassificationError when nothing usable comes back."""
        ai_text = await self.complete(text, rubric)
        items = extract_json_array(ai_text)
        if items is None:
            raise ClassificationError(f"AI response did not contain a JSON array: {ai_text}")

        proposals = normalize_proposals(items)
        if not proposals:
            raise ClassificationError("AI response contained no tasks")
        return proposals
