"""Embedding providers and similarity stores backing semantic recall."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass, field
import hashlib
import json
import math
from pathlib import Path
import re
import sqlite3
import threading
from typing import Any, Protocol

import httpx

from gravity_claw.logging import get_logger


log = get_logger(__name__)

MAX_EMBED_CHARS = 2000


@dataclass
class SemanticMatch:
    """One similarity-store hit."""

    id: str
    score: float
    metadata: dict[str, Any] = field(default_factory=dict)


class EmbeddingProvider(Protocol):
    provider_id: str

    async def embed(self, text: str) -> list[float]:
        """Return one embedding vector for ``text``."""
        ...


def _normalize_embedding(values: Iterable[float]) -> list[float]:
    vector = [float(v) if isinstance(v, (float, int)) and math.isfinite(float(v)) else 0.0 for v in values]
    norm = math.sqrt(sum(v * v for v in vector))
    if norm <= 1e-12:
        return vector
    return [v / norm for v in vector]


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Cosine similarity of two vectors; mismatched or empty vectors score 0."""
    if not a or not b or len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b, strict=False))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a <= 1e-12 or norm_b <= 1e-12:
        return 0.0
    score = dot / (norm_a * norm_b)
    if not math.isfinite(score):
        return 0.0
    return max(-1.0, min(1.0, score))


def _tokenize(text: str) -> list[str]:
    return [token for token in re.findall(r"[\w]+", text.lower()) if token]


class LocalHashEmbeddingProvider:
    """Offline sha1 bag-of-words embeddings; no network, deterministic."""

    provider_id = "local_hash"
    model = "sha1-bow"

    def __init__(self, dimensions: int = 256):
        self._dimensions = max(64, int(dimensions))

    def embed_sync(self, text: str) -> list[float]:
        bucket = [0.0] * self._dimensions
        tokens = _tokenize(text[:MAX_EMBED_CHARS])
        if not tokens:
            return bucket
        for token in tokens:
            digest = hashlib.sha1(token.encode("utf-8", errors="ignore")).digest()
            idx = int.from_bytes(digest[:4], byteorder="big", signed=False) % self._dimensions
            sign = -1.0 if digest[4] % 2 else 1.0
            bucket[idx] += sign
        return _normalize_embedding(bucket)

    async def embed(self, text: str) -> list[float]:
        return self.embed_sync(text)


class OpenAIEmbeddingProvider:
    """OpenAI-compatible ``/embeddings`` endpoint over httpx."""

    provider_id = "openai"

    def __init__(
        self,
        model: str = "text-embedding-3-small",
        api_key: str = "",
        base_url: str = "https://api.openai.com/v1",
        timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.model = str(model).strip() or "text-embedding-3-small"
        self._api_key = api_key
        self._base_url = str(base_url).rstrip("/") or "https://api.openai.com/v1"
        self._client = client or httpx.AsyncClient(timeout=max(1.0, float(timeout_seconds)))

    async def embed(self, text: str) -> list[float]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        response = await self._client.post(
            f"{self._base_url}/embeddings",
            json={"model": self.model, "input": text[:MAX_EMBED_CHARS]},
            headers=headers,
        )
        response.raise_for_status()
        data = response.json().get("data") or []
        embedding = (data[0] or {}).get("embedding") if data else None
        if not isinstance(embedding, list):
            raise ValueError("Embeddings response missing list 'embedding'")
        return _normalize_embedding(float(v) for v in embedding)

    async def close(self) -> None:
        await self._client.aclose()


def _matches_filter(metadata: dict[str, Any], filter: dict[str, Any] | None) -> bool:
    if not filter:
        return True
    return all(metadata.get(key) == value for key, value in filter.items())


class SimilarityStore(ABC):
    """Vector store scoped by metadata filters."""

    @abstractmethod
    async def upsert(self, id: str, vector: list[float], metadata: dict[str, Any]) -> None:
        pass

    @abstractmethod
    async def query(
        self,
        vector: list[float],
        top_k: int,
        filter: dict[str, Any] | None = None,
    ) -> list[SemanticMatch]:
        """Return up to ``top_k`` matches, highest score first."""
        pass

    async def close(self) -> None:
        return None


class InMemorySimilarityStore(SimilarityStore):
    """Process-local brute-force cosine store."""

    def __init__(self):
        self._records: dict[str, tuple[list[float], dict[str, Any]]] = {}

    async def upsert(self, id: str, vector: list[float], metadata: dict[str, Any]) -> None:
        self._records[id] = (list(vector), dict(metadata))

    async def query(
        self,
        vector: list[float],
        top_k: int,
        filter: dict[str, Any] | None = None,
    ) -> list[SemanticMatch]:
        scored = [
            SemanticMatch(id=record_id, score=cosine_similarity(vector, stored), metadata=dict(metadata))
            for record_id, (stored, metadata) in self._records.items()
            if _matches_filter(metadata, filter)
        ]
        scored.sort(key=lambda match: match.score, reverse=True)
        return scored[: max(0, int(top_k))]

    def __len__(self) -> int:
        return len(self._records)


class SQLiteSimilarityStore(SimilarityStore):
    """SQLite-backed vector store; scoring happens in Python off the event loop."""

    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path).expanduser()
        self._db_lock = threading.Lock()
        self._conn: sqlite3.Connection | None = None

    def _ensure_db(self) -> sqlite3.Connection:
        if self._conn is not None:
            return self._conn
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS memory_vectors (
                record_id TEXT PRIMARY KEY,
                dims INTEGER NOT NULL,
                embedding TEXT NOT NULL,
                metadata TEXT NOT NULL
            )
            """
        )
        conn.commit()
        self._conn = conn
        return conn

    def _upsert_sync(self, id: str, vector: list[float], metadata: dict[str, Any]) -> None:
        with self._db_lock:
            conn = self._ensure_db()
            conn.execute(
                """
                INSERT INTO memory_vectors (record_id, dims, embedding, metadata)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(record_id) DO UPDATE SET
                    dims = excluded.dims,
                    embedding = excluded.embedding,
                    metadata = excluded.metadata
                """,
                (id, len(vector), json.dumps(vector), json.dumps(metadata, ensure_ascii=False)),
            )
            conn.commit()

    def _query_sync(
        self,
        vector: list[float],
        top_k: int,
        filter: dict[str, Any] | None,
    ) -> list[SemanticMatch]:
        with self._db_lock:
            conn = self._ensure_db()
            rows = conn.execute(
                "SELECT record_id, embedding, metadata FROM memory_vectors WHERE dims = ?",
                (len(vector),),
            ).fetchall()
        scored: list[SemanticMatch] = []
        for record_id, raw_embedding, raw_metadata in rows:
            try:
                stored = [float(v) for v in json.loads(raw_embedding)]
                metadata = json.loads(raw_metadata)
            except (TypeError, ValueError):
                log.debug("Skipping unreadable vector row", record_id=record_id)
                continue
            if not isinstance(metadata, dict) or not _matches_filter(metadata, filter):
                continue
            scored.append(SemanticMatch(id=str(record_id), score=cosine_similarity(vector, stored), metadata=metadata))
        scored.sort(key=lambda match: match.score, reverse=True)
        return scored[: max(0, int(top_k))]

    async def upsert(self, id: str, vector: list[float], metadata: dict[str, Any]) -> None:
        await asyncio.to_thread(self._upsert_sync, id, list(vector), dict(metadata))

    async def query(
        self,
        vector: list[float],
        top_k: int,
        filter: dict[str, Any] | None = None,
    ) -> list[SemanticMatch]:
        return await asyncio.to_thread(self._query_sync, list(vector), top_k, filter)

    async def close(self) -> None:
        with self._db_lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None


def create_embedding_provider(embeddings_cfg: Any) -> EmbeddingProvider:
    """Build the configured embedding provider."""
    provider = str(getattr(embeddings_cfg, "provider", "local_hash") or "local_hash").strip().lower()
    if provider == "openai":
        return OpenAIEmbeddingProvider(
            model=str(getattr(embeddings_cfg, "model", "") or ""),
            api_key=str(getattr(embeddings_cfg, "api_key", "") or ""),
            base_url=str(getattr(embeddings_cfg, "base_url", "") or ""),
            timeout_seconds=float(getattr(embeddings_cfg, "request_timeout_seconds", 10.0)),
        )
    return LocalHashEmbeddingProvider(dimensions=int(getattr(embeddings_cfg, "dimensions", 256)))


def create_similarity_store(memory_cfg: Any) -> SimilarityStore:
    """Build the configured similarity store."""
    if str(getattr(memory_cfg, "vector_store", "memory")).strip().lower() == "sqlite":
        return SQLiteSimilarityStore(getattr(memory_cfg, "vector_path"))
    return InMemorySimilarityStore()
