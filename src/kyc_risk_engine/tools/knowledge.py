# src/kyc_risk_engine/tools/knowledge.py
"""
Regulatory knowledge base (SQLite-only).

- Auto-creates the `regulatory_document` table and seeds it from
  config/regulatory_seed.yaml when empty.
- Ranking: query tokens matched against keywords (x3), title (x2) and body (x1).
- Retrieval is best-effort: any storage error yields an empty context.
"""

from __future__ import annotations

import json
import logging
import os
import re
import sqlite3
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from crewai.tools import tool

from .persist import db_path_from_env, open_sqlite

LOGGER = logging.getLogger(__name__)

TOP_K = int(os.getenv("KYC_KNOWLEDGE_TOPK", "3"))
_SEED_PATH: Path = Path(__file__).resolve().parents[1] / "config" / "regulatory_seed.yaml"

SQLITE_DDL_REGULATORY = """
CREATE TABLE IF NOT EXISTS regulatory_document (
    doc_id    TEXT PRIMARY KEY,
    title     TEXT NOT NULL,
    category  TEXT NOT NULL,
    keywords  TEXT NOT NULL,   -- JSON array, lower-case
    content   TEXT NOT NULL
)
"""

_TOKEN_RE = re.compile(r"[a-z0-9]{2,}")


def tokenize(text: str) -> List[str]:
    return _TOKEN_RE.findall((text or "").lower())


def _load_seed(path: Path) -> List[Dict[str, Any]]:
    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except OSError as exc:
        LOGGER.warning("Failed to load regulatory seed %s: %s", path, exc)
        return []
    docs = data.get("documents") if isinstance(data, dict) else None
    return [d for d in docs or [] if isinstance(d, dict) and d.get("title") and d.get("content")]


def _score(tokens: List[str], keywords: List[str], title: str, content: str) -> int:
    kw = set(keywords)
    title_tokens = set(tokenize(title))
    body_tokens = set(tokenize(content))
    score = 0
    for t in set(tokens):
        if t in kw:
            score += 3
        if t in title_tokens:
            score += 2
        if t in body_tokens:
            score += 1
    return score


class SqliteKnowledgeBase:
    def __init__(
        self,
        db_path: Optional[str | os.PathLike[str]] = None,
        seed_path: Optional[str | os.PathLike[str]] = None,
        top_k: int = TOP_K,
    ) -> None:
        self.db_path = Path(db_path) if db_path else db_path_from_env()
        self.seed_path = Path(seed_path) if seed_path else _SEED_PATH
        self.top_k = top_k
        self._ready = False

    def _ensure_seeded(self, conn: sqlite3.Connection) -> None:
        if self._ready:
            return
        with conn:
            conn.execute(SQLITE_DDL_REGULATORY)
            count = conn.execute("SELECT COUNT(*) FROM regulatory_document").fetchone()[0]
            if not count:
                for doc in _load_seed(self.seed_path):
                    self._insert(conn, doc)
                LOGGER.info("Seeded regulatory knowledge base at %s", self.db_path)
        self._ready = True

    @staticmethod
    def _insert(conn: sqlite3.Connection, doc: Dict[str, Any]) -> None:
        keywords = sorted({str(k).lower() for k in doc.get("keywords") or []})
        conn.execute(
            "INSERT OR REPLACE INTO regulatory_document (doc_id, title, category, keywords, content) "
            "VALUES (?, ?, ?, ?, ?)",
            (
                str(doc.get("doc_id") or uuid.uuid4()),
                str(doc["title"]).strip(),
                str(doc.get("category") or "GUIDELINE").upper(),
                json.dumps(keywords),
                " ".join(str(doc["content"]).split()),
            ),
        )

    def add_document(self, title: str, content: str, category: str = "GUIDELINE",
                     keywords: Optional[List[str]] = None) -> None:
        conn = open_sqlite(self.db_path)
        try:
            self._ensure_seeded(conn)
            with conn:
                self._insert(conn, {"title": title, "content": content,
                                    "category": category, "keywords": keywords or []})
        finally:
            conn.close()

    def search(self, query: str) -> List[Dict[str, Any]]:
        tokens = tokenize(query)
        if not tokens:
            return []
        conn = open_sqlite(self.db_path)
        try:
            self._ensure_seeded(conn)
            rows = conn.execute("SELECT doc_id, title, category, keywords, content FROM regulatory_document").fetchall()
        finally:
            conn.close()

        max_score = 6 * len(set(tokens))
        hits = []
        for r in rows:
            s = _score(tokens, json.loads(r["keywords"] or "[]"), r["title"], r["content"])
            if s > 0:
                hits.append({
                    "doc_id": r["doc_id"],
                    "title": r["title"],
                    "category": r["category"],
                    "content": r["content"],
                    "relevance": s / max_score,
                })
        hits.sort(key=lambda h: (-h["relevance"], h["title"]))
        return hits[: self.top_k]

    def retrieve_context(self, query: str) -> str:
        try:
            hits = self.search(query)
        except (sqlite3.Error, json.JSONDecodeError) as exc:
            LOGGER.warning("Regulatory context retrieval failed: %s", exc)
            return ""
        if not hits:
            return ""
        parts = ["Relevant regulatory information:", ""]
        for i, h in enumerate(hits, start=1):
            parts.append(f"[{i}] {h['title']} ({h['category']}) - Relevance: {h['relevance']:.2%}")
            parts.append(h["content"])
            parts.append("")
        return "\n".join(parts).strip()


@tool("regulatory_search")
def regulatory_search(query: str) -> str:
    """
    Search the regulatory knowledge base (FATF, AMLD, CDD procedures, red flags, GDPR).

    Args:
        query: free-text description of the risk topic, e.g. "PEP cash intensive".

    Returns:
        Ranked excerpts as plain text, or an empty string when nothing matches.
    """
    return SqliteKnowledgeBase().retrieve_context(query)


__all__ = ["SqliteKnowledgeBase", "regulatory_search", "tokenize"]
