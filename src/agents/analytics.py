"""Analytics agent: tracks content performance and surfaces what works."""
from __future__ import annotations

import logging
import math
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

from memory.store import MemoryEntry, MemoryStore
from protocol.errors import InvalidInputError
from protocol.message import Message

from .base import ActionHandler, AgentContext, BaseAgent, Capability

logger = logging.getLogger(__name__)

METRICS_PREFIX = "metrics:"
MAX_REPORT_DAYS = 3650
MAX_TOP_CONTENT = 100


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _num(value: Any) -> Optional[float]:
    """Finite numeric value of ``value`` or None; booleans are not numbers here."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    try:
        n = float(value) if isinstance(value, float) else float(str(value))
    except (ValueError, OverflowError):
        return None
    return n if math.isfinite(n) else None


def _int_arg(value: Any, default: int, maximum: int) -> int:
    """Positive whole-number argument, clamped to ``maximum``."""
    n = _num(value)
    if n is None or n < 1:
        return default
    return int(min(n, maximum))


def _parse_ts(value: Any) -> Optional[datetime]:
    try:
        ts = datetime.fromisoformat(str(value))
    except ValueError:
        return None
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


def _platform_stats(record: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    stats = record.get("metrics")
    return stats if isinstance(stats, dict) else {}


class AnalyticsAgent(BaseAgent):
    name = "analytics"
    description = "Tracks content performance, provides insights, and learns what works best"
    version = "1.0.0"
    capabilities = (
        Capability(
            name="track",
            description="Record metrics for a piece of content",
            input_schema={"content_id": "string", "platform": "string", "metrics": "object"},
            output_schema={"tracked": "boolean"},
        ),
        Capability(
            name="report",
            description="Get performance report for recent content",
            input_schema={"days": "number?", "platform": "string?"},
            output_schema={"report": "object"},
        ),
        Capability(
            name="insights",
            description="Get insights on what content performs best",
            input_schema={},
            output_schema={"insights": "string[]"},
        ),
        Capability(
            name="top-content",
            description="Get top performing content",
            input_schema={"limit": "number?", "metric": "string?"},
            output_schema={"content": "object[]"},
        ),
    )

    def __init__(self, memory: MemoryStore) -> None:
        self.memory = memory

    @classmethod
    def from_context(cls, ctx: AgentContext) -> "AnalyticsAgent":
        return cls(ctx.memory)

    def actions(self) -> Dict[str, ActionHandler]:
        return {
            "track": self.track,
            "report": self.report,
            "insights": self.insights,
            "top-content": self.top_content,
        }

    # ----------------- actions -----------------
    async def track(self, message: Message, data: Dict[str, Any]) -> Dict[str, Any]:
        content_id = str(data.get("content_id") or "").strip()
        platform = str(data.get("platform") or "").strip()
        if not content_id or not platform:
            raise InvalidInputError("track requires 'content_id' and 'platform'")
        metrics = data.get("metrics") or {}
        if not isinstance(metrics, dict):
            raise InvalidInputError("'metrics' must be an object")
        raw_tags = data.get("tags") or []
        if not isinstance(raw_tags, (list, tuple)):
            raw_tags = [raw_tags]
        tags = [str(t) for t in raw_tags if str(t).strip()]

        key = f"{METRICS_PREFIX}{content_id}"
        now = _utc_now().isoformat()
        record = self.memory.get(key)
        if not isinstance(record, dict):
            record = {
                "id": content_id,
                "title": data.get("title") or content_id,
                "topic": data.get("topic") or "",
                "created_at": now,
                "platforms": [],
                "metrics": {},
                "tags": tags,
            }
        else:
            if data.get("title"):
                record["title"] = data["title"]
            if data.get("topic"):
                record["topic"] = data["topic"]
            record["tags"] = list(dict.fromkeys(list(record.get("tags") or []) + tags))

        stats = dict(_platform_stats(record).get(platform) or {})
        for name, value in metrics.items():
            n = _num(value)
            if n is not None:
                stats[name] = n
        stats["updated_at"] = now
        views = _num(stats.get("views")) or 0
        if views > 0:
            engaged = sum(_num(stats.get(k)) or 0 for k in ("likes", "comments", "shares"))
            stats["engagement"] = engaged / views * 100

        record.setdefault("metrics", {})[platform] = stats
        platforms = record.setdefault("platforms", [])
        if platform not in platforms:
            platforms.append(platform)

        await self.memory.set(key, record, self.name, ["metrics", platform, *record["tags"]])
        return {"tracked": True, "content_id": content_id, "platform": platform}

    async def report(self, message: Message, data: Dict[str, Any]) -> Dict[str, Any]:
        days = _int_arg(data.get("days"), 30, MAX_REPORT_DAYS)
        platform = data.get("platform") or None
        cutoff = _utc_now() - timedelta(days=days)

        recent = [e for e in self._tracked() if self._created_after(e, cutoff)]
        totals = {"views": 0.0, "likes": 0.0, "shares": 0.0, "comments": 0.0}
        content_count = 0
        for entry in recent:
            per_platform = _platform_stats(entry.value)
            if platform and platform not in per_platform:
                continue
            content_count += 1
            for p, stats in per_platform.items():
                if platform and p != platform:
                    continue
                for k in totals:
                    totals[k] += _num(stats.get(k)) or 0

        engaged = totals["likes"] + totals["comments"] + totals["shares"]
        avg = engaged / totals["views"] * 100 if totals["views"] > 0 else 0.0
        return {
            "period": f"Last {days} days",
            "platform": platform or "all",
            "content_count": content_count,
            "total_views": totals["views"],
            "total_likes": totals["likes"],
            "total_shares": totals["shares"],
            "total_comments": totals["comments"],
            "avg_engagement": f"{avg:.2f}%",
            "top_platform": self._top_platform(recent),
        }

    async def insights(self, message: Message, data: Dict[str, Any]) -> Dict[str, Any]:
        tracked = self._tracked()
        if not tracked:
            return {"insights": ["No content tracked yet. Start generating and tracking to get insights!"]}

        insights: List[str] = []
        topics: Dict[str, Dict[str, float]] = {}
        for entry in tracked:
            topic = entry.value.get("topic")
            if not topic:
                continue
            agg = topics.setdefault(topic, {"views": 0.0, "engagement": 0.0})
            for stats in _platform_stats(entry.value).values():
                agg["views"] += _num(stats.get("views")) or 0
                agg["engagement"] += _num(stats.get("engagement")) or 0
        if topics:
            best_topic, agg = max(topics.items(), key=lambda kv: kv[1]["engagement"])
            insights.append(f'Best performing topic: "{best_topic}" with {agg["views"]:g} total views')

        engagement_by_platform: Dict[str, float] = defaultdict(float)
        for entry in tracked:
            for p, stats in _platform_stats(entry.value).items():
                engagement_by_platform[p] += _num(stats.get("engagement")) or 0
        if engagement_by_platform:
            best_platform = max(engagement_by_platform.items(), key=lambda kv: kv[1])[0]
            insights.append(f"Best platform: {best_platform} (highest engagement)")

        insights.append(f"Total content tracked: {len(tracked)} pieces")
        insights.append("Tip: Track metrics regularly to improve content strategy")
        return {"insights": insights}

    async def top_content(self, message: Message, data: Dict[str, Any]) -> Dict[str, Any]:
        limit = _int_arg(data.get("limit"), 5, MAX_TOP_CONTENT)
        metric = str(data.get("metric") or "views")

        scored = []
        for entry in self._tracked():
            record = entry.value
            score = sum(_num(s.get(metric)) or 0 for s in _platform_stats(record).values())
            scored.append({
                "title": record.get("title"),
                "topic": record.get("topic"),
                "platforms": list(record.get("platforms") or []),
                "score": score,
                "metric": metric,
            })
        # sorted() is stable, so ties keep insertion order.
        scored.sort(key=lambda c: c["score"], reverse=True)
        return {"content": scored[:limit]}

    # ----------------- helpers -----------------
    def _tracked(self) -> List[MemoryEntry]:
        return [e for e in self.memory.search(METRICS_PREFIX) if isinstance(e.value, dict)]

    @staticmethod
    def _created_after(entry: MemoryEntry, cutoff: datetime) -> bool:
        created = _parse_ts(entry.value.get("created_at"))
        return created is not None and created >= cutoff

    @staticmethod
    def _top_platform(entries: Iterable[MemoryEntry]) -> str:
        views: Dict[str, float] = defaultdict(float)
        for entry in entries:
            for p, stats in _platform_stats(entry.value).items():
                views[p] += _num(stats.get("views")) or 0
        if not views:
            return "none"
        return max(views.items(), key=lambda kv: kv[1])[0]
