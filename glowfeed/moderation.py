import json
import logging
import os

from openai import AsyncOpenAI

from glowfeed.config import MODERATION_MODEL
from glowfeed.models import ModerationResult

_log = logging.getLogger(__name__)

SYSTEM_PROMPT = """You moderate posts for a self-improvement community. Flag content containing:
- Hate speech or discrimination
- Explicit adult content
- Violence or gore
- Harassment, bullying or personal attacks
- Spam or misleading content
- Inappropriate language

Return JSON: {"is_acceptable": bool, "reason": string or null (why it was rejected)}"""


class ContentRejectedError(Exception):
    def __init__(self, reason: str | None) -> None:
        self.reason = reason or "This content is not allowed"
        super().__init__(self.reason)


async def moderate_content(text: str) -> ModerationResult:
    """Classify post text. Fails open: any API or parse error accepts the content."""
    try:
        client = AsyncOpenAI(api_key=os.getenv("OPENAI_API_KEY"))
        response = await client.chat.completions.create(
            model=MODERATION_MODEL,
            response_format={"type": "json_object"},
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": text},
            ],
        )
        data = json.loads(response.choices[0].message.content)
        return ModerationResult(
            is_acceptable=bool(data.get("is_acceptable", True)),
            reason=data.get("reason"),
        )
    except Exception as exc:
        _log.warning("moderation unavailable, accepting content: %s", exc)
        return ModerationResult(is_acceptable=True)
