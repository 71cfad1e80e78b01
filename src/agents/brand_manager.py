"""Brand manager agent: brand voice, style preferences and feedback learning."""
from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional

from llm.engine import ChatMessage, LLMClient
from llm.parsing import Fallback, ParseResult, extract_json
from memory.store import MemoryStore
from protocol.errors import InvalidInputError
from protocol.message import Message

from .base import ActionHandler, AgentContext, BaseAgent, Capability
from .brand_profile import BrandProfile, render_guidelines

logger = logging.getLogger(__name__)

LEARN_SYSTEM_PROMPT = """You are a brand learning system. Extract actionable writing rules from user feedback.

Convert feedback into specific, reusable rules. Examples:
- "Too formal" -> "Use conversational tone, contractions, and shorter sentences"
- "Not enough data" -> "Include at least 3 statistics or data points per blog post"
- "Love the humor" -> "Continue using light humor and analogies"

Return ONLY valid JSON:
{
  "learning": "the specific actionable rule",
  "applies_to": "blog|social|twitter|linkedin|instagram|all",
  "priority": "high|medium|low"
}"""

ANALYZE_SYSTEM_PROMPT = """Analyze this content sample and extract the brand voice, tone, and style.

Return ONLY valid JSON:
{
  "voice": "description of writing voice",
  "tone": "description of tone",
  "audience": "who this is written for",
  "characteristics": ["list", "of", "key", "characteristics"],
  "vocabulary_level": "simple|moderate|advanced",
  "sentence_length": "short|medium|long|mixed",
  "use_of_humor": "none|light|heavy",
  "use_of_data": "none|light|heavy",
  "use_of_emojis": "none|light|heavy",
  "recommended_voice": "a concise brand voice description to use as a writing guideline"
}"""


class BrandManagerAgent(BaseAgent):
    name = "brand-manager"
    description = "Manages brand voice, style preferences, and learns from feedback to improve content quality"
    version = "1.0.0"
    capabilities = (
        Capability(
            name="get-brand-context",
            description="Get the brand profile and writing guidelines for content generation",
            input_schema={"brand_name": "string?"},
            output_schema={"profile": "BrandProfile", "guidelines": "string"},
        ),
        Capability(
            name="set-brand",
            description="Set or update brand profile (voice, tone, audience, etc.)",
            input_schema={"name": "string?", "profile": "Partial<BrandProfile>"},
            output_schema={"saved": "boolean", "profile": "BrandProfile"},
        ),
        Capability(
            name="learn-from-feedback",
            description="Learn from user feedback on generated content",
            input_schema={"feedback": "string", "content_type": "string?", "rating": "number?"},
            output_schema={"learned": "string", "applies_to": "string"},
        ),
        Capability(
            name="analyze-sample",
            description="Analyze a content sample to extract brand voice and style",
            input_schema={"sample": "string"},
            output_schema={"analysis": "object"},
        ),
    )

    def __init__(self, memory: MemoryStore, llm: Optional[LLMClient] = None, *, brand_name: str = "default") -> None:
        self.memory = memory
        self.llm = llm
        self.brand_name = brand_name

    @classmethod
    def from_context(cls, ctx: AgentContext) -> "BrandManagerAgent":
        return cls(ctx.memory, ctx.llm, brand_name=ctx.brand_name)

    def actions(self) -> Dict[str, ActionHandler]:
        return {
            "get-brand-context": self.get_brand_context,
            "set-brand": self.set_brand,
            "learn-from-feedback": self.learn_from_feedback,
            "analyze-sample": self.analyze_sample,
        }

    # ----------------- actions -----------------
    async def get_brand_context(self, message: Message, data: Dict[str, Any]) -> Dict[str, Any]:
        profile = self.get_profile(str(data.get("brand_name") or self.brand_name))
        return {"profile": profile.to_dict(), "guidelines": render_guidelines(profile)}

    async def set_brand(self, message: Message, data: Dict[str, Any]) -> Dict[str, Any]:
        brand_name = str(data.get("name") or data.get("brand_name") or self.brand_name)
        nested = data.get("profile")
        updates = dict(nested) if isinstance(nested, dict) else dict(data)
        updates["name"] = brand_name
        updated = self.get_profile(brand_name).merged(updates)

        await self.memory.set(f"brand:{brand_name}", updated.to_dict(), self.name, ["brand", brand_name])
        # Shared scalars for agents that only need the basics.
        await self.memory.set("brand_voice", updated.voice, self.name, ["brand"])
        await self.memory.set("brand_tone", updated.tone, self.name, ["brand"])
        await self.memory.set("brand_audience", updated.audience, self.name, ["brand"])
        await self.memory.set("social_tone", updated.social_style, self.name, ["brand"])

        logger.info("Brand updated: %s", brand_name)
        return {"saved": True, "profile": updated.to_dict()}

    async def learn_from_feedback(self, message: Message, data: Dict[str, Any]) -> Dict[str, Any]:
        feedback = str(data.get("feedback") or "").strip()
        if not feedback:
            raise InvalidInputError("learn-from-feedback requires 'feedback'")
        content_type = str(data.get("content_type") or "general")
        rating = data.get("rating")

        rating_note = f" (rating: {rating}/5)" if rating else ""
        parsed = await self._ask([
            {"role": "system", "content": LEARN_SYSTEM_PROMPT},
            {"role": "user", "content": f'Feedback on {content_type} content{rating_note}:\n"{feedback}"'},
        ], fallback=feedback)
        learned = {} if isinstance(parsed, Fallback) else parsed.value
        learning = str(learned.get("learning") or feedback)
        applies_to = str(learned.get("applies_to") or "all")
        priority = str(learned.get("priority") or "medium")

        profile = self.get_profile(self.brand_name).merged({"learnings": [f"[{applies_to}] {learning}"]})
        await self.memory.set(
            f"brand:{self.brand_name}", profile.to_dict(), self.name, ["brand", self.brand_name, "learning"]
        )
        await self.memory.set(
            self._feedback_key(),
            {
                "feedback": feedback,
                "learning": learning,
                "content_type": content_type,
                "rating": rating,
                "priority": priority,
            },
            self.name,
            ["feedback", content_type],
        )

        logger.info("Learned: %s", learning)
        return {"learned": learning, "applies_to": applies_to, "priority": priority}

    async def analyze_sample(self, message: Message, data: Dict[str, Any]) -> Dict[str, Any]:
        sample = str(data.get("sample") or "").strip()
        if not sample:
            raise InvalidInputError("analyze-sample requires 'sample'")

        parsed = await self._ask([
            {"role": "system", "content": ANALYZE_SYSTEM_PROMPT},
            {"role": "user", "content": f"Analyze this content:\n\n{sample}"},
        ], fallback=sample)
        if isinstance(parsed, Fallback):
            logger.warning("Sample analysis was not JSON (%s)", parsed.reason)
            return {"analysis": {"raw": parsed.raw}}
        return {"analysis": parsed.value}

    # ----------------- helpers -----------------
    def get_profile(self, name: str) -> BrandProfile:
        stored = self.memory.get(f"brand:{name}")
        return BrandProfile.from_dict(stored if isinstance(stored, dict) else None, name=name)

    async def _ask(self, messages: List[ChatMessage], *, fallback: str) -> ParseResult:
        """Ask the model for a JSON object.

        A missing or failing model degrades to ``Fallback(fallback)`` so the
        action still answers with the caller's own input.
        """
        if self.llm is None:
            return Fallback(raw=fallback, reason="no language model configured")
        try:
            response = await self.llm.chat(messages)
        except Exception as e:
            logger.warning("Language model call failed (%s: %s); using raw input", type(e).__name__, e)
            return Fallback(raw=fallback, reason=f"model error: {e}")
        return extract_json(response.content or "")

    def _feedback_key(self) -> str:
        stamp = int(time.time() * 1000)
        key = f"feedback:{stamp}"
        n = 1
        while key in self.memory:
            key = f"feedback:{stamp}-{n}"
            n += 1
        return key
