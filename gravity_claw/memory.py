"""Layered memory for Gravity Claw: recent buffer, semantic recall and durable facts."""

from __future__ import annotations

import json
import re
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Literal

from gravity_claw.exceptions import MemoryWriteError
from gravity_claw.facts_store import JsonFactStore
from gravity_claw.llm import LLMProvider, Message
from gravity_claw.logging import get_logger
from gravity_claw.semantic_memory import (
    MAX_EMBED_CHARS,
    EmbeddingProvider,
    SimilarityStore,
    create_embedding_provider,
    create_similarity_store,
)

log = get_logger(__name__)

MAX_RECORD_CHARS = 1000

FACT_EXTRACTION_PROMPT = (
    "Extract key facts about the USER from this conversation snippet. "
    "Only include things that are definitively stated (name, occupation, preferences, ongoing projects, "
    "relationships). Return a JSON object with lowercase_snake_case keys and string values. "
    "Return {} if nothing notable. Never invent information."
)

COMPACT_PROMPT = (
    "Write a concise, information-dense summary of this conversation. "
    "Focus on decisions made, information shared, tasks discussed, and any user preferences revealed. "
    "Write in third person past tense."
)

_JSON_FENCE_START = re.compile(r"^```(?:json)?\s*\n?", re.IGNORECASE)
_JSON_FENCE_END = re.compile(r"\n?```\s*$")


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class MemoryRecord:
    """One remembered message. ``timestamp`` is Unix epoch milliseconds."""

    role: Literal["user", "assistant"]
    content: str
    timestamp: int
    score: float | None = None


@dataclass
class MemoryContext:
    """Everything the assembler found for one utterance."""

    recent: list[MemoryRecord] = field(default_factory=list)
    semantic: list[MemoryRecord] = field(default_factory=list)
    facts: dict[str, str] = field(default_factory=dict)


@dataclass
class PendingMemoryWrite:
    """Exchange already in the recent buffer, waiting for its slower writes."""

    user_id: str
    records: list[MemoryRecord]
    extraction_window: list[MemoryRecord] | None = None


class RecentBuffer:
    """Per-user bounded message buffer; oldest entries are evicted past ``cap``."""

    def __init__(self, cap: int = 50):
        self.cap = max(1, int(cap))
        self._buffers: dict[str, list[MemoryRecord]] = {}
        self._appended: dict[str, int] = {}

    def get(self, user_id: str) -> list[MemoryRecord]:
        return list(self._buffers.get(user_id, []))

    def recent(self, user_id: str, count: int) -> list[MemoryRecord]:
        if count <= 0:
            return []
        return list(self._buffers.get(user_id, [])[-count:])

    def append(self, user_id: str, *records: MemoryRecord) -> int:
        """Append records, trim to cap, and return the user's lifetime append count."""
        buffer = self._buffers.setdefault(user_id, [])
        buffer.extend(records)
        if len(buffer) > self.cap:
            del buffer[: len(buffer) - self.cap]
        self._appended[user_id] = self._appended.get(user_id, 0) + len(records)
        return self._appended[user_id]

    def clear(self, user_id: str) -> None:
        self._buffers.pop(user_id, None)

    def __len__(self) -> int:
        return len(self._buffers)


def parse_fact_payload(raw: str) -> dict[str, str]:
    """Decode the extractor's reply (optionally fenced) into a flat string map."""
    text = _JSON_FENCE_END.sub("", _JSON_FENCE_START.sub("", (raw or "").strip())).strip()
    if not text:
        return {}
    data = json.loads(text)
    if not isinstance(data, dict):
        return {}
    facts: dict[str, str] = {}
    for key, value in data.items():
        if isinstance(value, str) and value.strip():
            facts[str(key)] = value.strip()
    return facts


def _transcript(records: Sequence[MemoryRecord]) -> str:
    return "\n".join(f"{record.role.upper()}: {record.content}" for record in records)


class MemoryManager:
    """Reads and writes the three memory tiers for each user."""

    def __init__(
        self,
        embedder: EmbeddingProvider,
        store: SimilarityStore,
        facts: JsonFactStore,
        provider: LLMProvider | None = None,
        *,
        buffer_cap: int = 50,
        context_messages: int = 10,
        semantic_matches: int = 5,
        semantic_overfetch: int = 5,
        relevance_threshold: float = 0.75,
        extraction_every: int = 4,
        extraction_window: int = 8,
    ):
        self.embedder = embedder
        self.store = store
        self.facts = facts
        self.provider = provider
        self.buffer = RecentBuffer(cap=buffer_cap)
        self.context_messages = int(context_messages)
        self.semantic_matches = int(semantic_matches)
        self.semantic_overfetch = max(0, int(semantic_overfetch))
        self.relevance_threshold = float(relevance_threshold)
        self.extraction_every = max(1, int(extraction_every))
        self.extraction_window = max(1, int(extraction_window))

    @classmethod
    def from_config(cls, memory_cfg: Any, provider: LLMProvider | None = None) -> "MemoryManager":
        return cls(
            embedder=create_embedding_provider(memory_cfg.embeddings),
            store=create_similarity_store(memory_cfg),
            facts=JsonFactStore(memory_cfg.facts_path),
            provider=provider,
            buffer_cap=memory_cfg.buffer_cap,
            context_messages=memory_cfg.context_messages,
            semantic_matches=memory_cfg.semantic_matches,
            semantic_overfetch=memory_cfg.semantic_overfetch,
            relevance_threshold=memory_cfg.relevance_threshold,
            extraction_every=memory_cfg.extraction_every,
            extraction_window=memory_cfg.extraction_window,
        )

    def _get_provider(self) -> LLMProvider:
        if self.provider is None:
            from gravity_claw.llm import get_provider

            self.provider = get_provider()
        return self.provider

    # Read path

    async def search_semantic(
        self,
        user_id: str,
        utterance: str,
        exclude_contents: set[str] | None = None,
    ) -> list[MemoryRecord]:
        """Top matches above the relevance threshold, best first."""
        if self.semantic_matches <= 0:
            return []
        vector = await self.embedder.embed(utterance[:MAX_EMBED_CHARS])
        raw = await self.store.query(
            vector,
            self.semantic_matches + self.semantic_overfetch,
            {"user_id": user_id},
        )
        excluded = exclude_contents or set()
        matches: list[MemoryRecord] = []
        for match in raw:
            metadata = match.metadata or {}
            content = str(metadata.get("content", ""))
            if content in excluded or match.score <= self.relevance_threshold:
                continue
            role = "user" if metadata.get("role") == "user" else "assistant"
            matches.append(
                MemoryRecord(
                    role=role,
                    content=content,
                    timestamp=int(metadata.get("timestamp") or 0),
                    score=float(match.score),
                )
            )
        return matches[: self.semantic_matches]

    async def get_context(self, user_id: str, utterance: str) -> MemoryContext:
        """Assemble recent, semantic and fact tiers. Store failures degrade to empty tiers."""
        recent = self.buffer.recent(user_id, self.context_messages)

        semantic: list[MemoryRecord] = []
        try:
            semantic = await self.search_semantic(
                user_id,
                utterance,
                exclude_contents={record.content for record in recent},
            )
        except Exception as e:
            log.warning("Semantic memory search failed", user_id=user_id, error=str(e))

        facts: dict[str, str] = {}
        try:
            facts = await self.facts.get(user_id)
        except Exception as e:
            log.warning("Fact store read failed", user_id=user_id, error=str(e))

        return MemoryContext(recent=recent, semantic=semantic, facts=facts)

    # Write path

    def record_exchange(self, user_id: str, user_message: str, assistant_message: str) -> PendingMemoryWrite:
        """Append the exchange to the recent buffer now; return the deferred work."""
        now = _now_ms()
        records = [
            MemoryRecord(role="user", content=user_message, timestamp=now),
            MemoryRecord(role="assistant", content=assistant_message, timestamp=now + 1),
        ]
        appended_before = self.buffer.append(user_id, *records) - len(records)
        appended_after = appended_before + len(records)
        window = None
        if appended_after // self.extraction_every > appended_before // self.extraction_every:
            window = self.buffer.recent(user_id, self.extraction_window)
        return PendingMemoryWrite(user_id=user_id, records=records, extraction_window=window)

    async def _save_record(self, user_id: str, record: MemoryRecord) -> None:
        vector = await self.embedder.embed(record.content[:MAX_EMBED_CHARS])
        await self.store.upsert(
            f"{user_id}-{record.timestamp}-{record.role}",
            vector,
            {
                "user_id": user_id,
                "role": record.role,
                "content": record.content[:MAX_RECORD_CHARS],
                "timestamp": record.timestamp,
            },
        )

    async def persist(self, pending: PendingMemoryWrite) -> None:
        """Embed and upsert the exchange, then run fact extraction when due.

        Raises:
            MemoryWriteError if the similarity-store write failed
        """
        store_error: Exception | None = None
        try:
            for record in pending.records:
                await self._save_record(pending.user_id, record)
        except Exception as e:
            store_error = e

        if pending.extraction_window:
            await self.extract_and_save_facts(pending.user_id, pending.extraction_window)

        if store_error is not None:
            raise MemoryWriteError("semantic_upsert", str(store_error)) from store_error

    async def extract_and_save_facts(self, user_id: str, records: Sequence[MemoryRecord]) -> dict[str, str]:
        """Ask the provider for stated facts and merge them. Failures are logged and ignored."""
        if not records:
            return {}
        try:
            response = await self._get_provider().complete(
                [
                    Message(role="system", content=FACT_EXTRACTION_PROMPT),
                    Message(role="user", content=_transcript(records)),
                ],
                max_tokens=256,
            )
            facts = parse_fact_payload(response.content or "{}")
            await self.facts.update(user_id, facts)
        except Exception as e:
            log.warning("Fact extraction failed", user_id=user_id, error=str(e))
            return {}
        if facts:
            log.info("Facts extracted", user_id=user_id, keys=sorted(facts))
        return facts

    async def compact_session(self, user_id: str) -> str:
        """Summarize the recent buffer into semantic memory, then clear the buffer.

        Errors propagate so the caller can report them.
        """
        records = self.buffer.get(user_id)
        if not records:
            return ""
        try:
            response = await self._get_provider().complete(
                [
                    Message(role="system", content=COMPACT_PROMPT),
                    Message(role="user", content=_transcript(records)),
                ],
                max_tokens=512,
            )
            summary = (response.content or "").strip()
            if summary:
                await self._save_record(
                    user_id,
                    MemoryRecord(role="assistant", content=f"[SUMMARY] {summary}", timestamp=_now_ms()),
                )
        except Exception as e:
            log.warning("Session compaction failed", user_id=user_id, error=str(e))
            raise
        self.clear_session(user_id)
        log.info("Session compacted", user_id=user_id, messages=len(records))
        return summary

    def clear_session(self, user_id: str) -> None:
        self.buffer.clear(user_id)
