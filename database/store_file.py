"""
FileConversationStore — JSON file-backed store with persistence across restarts.

Data layout:
  {data_dir}/
    conversations.json     address → conversation
    tokens.json            token → correlation token record

Features:
  - Survives process restarts (unlike InMemoryConversationStore)
  - No external dependencies (no database server)
  - Every write flushes the changed collection (write-to-temp then rename)
  - Single-process only (locks are in-process)

Best for: small deployments, demos.
"""
from __future__ import annotations

import json
import structlog
from datetime import datetime
from pathlib import Path
from typing import Any

from database.store_memory import InMemoryConversationStore
from models.schemas import Conversation, CorrelationToken

logger = structlog.get_logger()

_COLLECTIONS = ["conversations", "tokens"]


class FileConversationStore(InMemoryConversationStore):
    """
    Extends InMemoryConversationStore with JSON file persistence.

    On init: loads all data from JSON files into memory.
    On every write: flushes the changed collection to disk.
    """

    def __init__(self, data_dir: str = "./data"):
        super().__init__()
        self._data_dir = Path(data_dir)
        self._data_dir.mkdir(parents=True, exist_ok=True)
        self._load_all()
        logger.info("file_store_initialized", data_dir=str(self._data_dir))

    # ── Load / Save ───────────────────────────────────────

    def _file_path(self, collection: str) -> Path:
        return self._data_dir / f"{collection}.json"

    def _load_all(self):
        """Load all collections from disk."""
        for collection in _COLLECTIONS:
            path = self._file_path(collection)
            if not path.exists():
                continue
            try:
                with open(path, "r") as f:
                    data = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                logger.warning("file_store_load_error",
                               collection=collection, error=str(e))
                continue
            self._set_collection(collection, data if isinstance(data, dict) else {})
            logger.debug("file_store_loaded", collection=collection, records=len(data))

    def _set_collection(self, collection: str, data: dict[str, Any]):
        """Restore a collection from loaded JSON data."""
        if collection == "conversations":
            self._conversations = {
                address: Conversation.model_validate(raw) for address, raw in data.items()
            }
        elif collection == "tokens":
            self._tokens = {
                token: CorrelationToken.model_validate(raw) for token, raw in data.items()
            }

    def _get_collection_data(self, collection: str) -> dict[str, Any]:
        """Get serializable data for a collection."""
        mapping = {
            "conversations": self._conversations,
            "tokens": self._tokens,
        }
        return {k: v.model_dump(mode="json") for k, v in mapping.get(collection, {}).items()}

    def _flush_collection(self, collection: str):
        """Write a single collection to disk."""
        path = self._file_path(collection)
        data = self._get_collection_data(collection)
        tmp_path = path.with_suffix(".tmp")
        with open(tmp_path, "w") as f:
            json.dump(data, f, indent=2)
        tmp_path.replace(path)  # atomic on POSIX

    # ── Override write methods to trigger persistence ──────

    async def _write(self, conversation: Conversation) -> None:
        await super()._write(conversation)
        self._flush_collection("conversations")

    async def save_token(self, token: CorrelationToken) -> None:
        await super().save_token(token)
        self._flush_collection("tokens")

    async def purge_tokens(self, before: datetime) -> int:
        purged = await super().purge_tokens(before)
        if purged:
            self._flush_collection("tokens")
        return purged
