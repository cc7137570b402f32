# src/ai_review_sync/review_cache.py
import hashlib
import json
import logging
import os
from dataclasses import asdict
from datetime import datetime, timedelta, timezone
from typing import Optional

from .models import FileReviewState, ReviewedLine

logger = logging.getLogger(__name__)

DEFAULT_TTL_DAYS = 7
CACHE_FORMAT_VERSION = 1


class BaseReviewCache:
    """
    Interface of the per-file review state store.
    Implementations must never raise from `load`: an unreadable entry is a cache miss.
    """

    def load(self, key: str) -> Optional[FileReviewState]:
        raise NotImplementedError

    def save(self, key: str, state: FileReviewState) -> bool:
        raise NotImplementedError

    def last_reconciled_revision(self, unit_key: str) -> Optional[str]:
        raise NotImplementedError

    def record_reconciled_revision(self, unit_key: str, revision: str) -> bool:
        raise NotImplementedError


class JsonFileReviewCache(BaseReviewCache):
    """
    Stores one JSON document per key under `cache_dir`. Entries older than
    `ttl_days` are treated as missing.
    """

    def __init__(self, cache_dir: str, ttl_days: int = DEFAULT_TTL_DAYS):
        self.cache_dir = cache_dir
        self.ttl = timedelta(days=max(1, ttl_days))
        logger.info(f"Review cache initialized at {cache_dir} (TTL: {self.ttl.days} days)")

    def _path_for(self, key: str) -> str:
        digest = hashlib.sha1(key.encode('utf-8')).hexdigest()
        return os.path.join(self.cache_dir, f"{digest}.json")

    def _read(self, key: str) -> Optional[dict]:
        path = self._path_for(key)
        if not os.path.exists(path):
            return None
        try:
            with open(path, 'r', encoding='utf-8') as f:
                document = json.load(f)
            saved_at = datetime.fromisoformat(document["saved_at"])
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Ignoring unreadable cache entry for '{key}': {e}")
            return None
        if saved_at.tzinfo is None:
            saved_at = saved_at.replace(tzinfo=timezone.utc)

        if document.get("version") != CACHE_FORMAT_VERSION:
            logger.info(f"Ignoring cache entry for '{key}' written by format version {document.get('version')}.")
            return None
        if datetime.now(timezone.utc) - saved_at > self.ttl:
            logger.info(f"Cache entry for '{key}' expired (saved at {document['saved_at']}).")
            return None
        return document

    def _write(self, key: str, payload: dict) -> bool:
        document = {
            "version": CACHE_FORMAT_VERSION,
            "key": key,
            "saved_at": datetime.now(timezone.utc).isoformat(),
            **payload,
        }
        path = self._path_for(key)
        try:
            os.makedirs(self.cache_dir, exist_ok=True)
            tmp_path = f"{path}.tmp"
            with open(tmp_path, 'w', encoding='utf-8') as f:
                json.dump(document, f, indent=2)
            os.replace(tmp_path, path)
            return True
        except OSError as e:
            logger.error(f"Failed to write cache entry for '{key}': {e}")
            return False

    def load(self, key: str) -> Optional[FileReviewState]:
        document = self._read(key)
        if document is None:
            return None
        try:
            raw_state = document["state"]
            return FileReviewState(
                filename=raw_state["filename"],
                content_hash=raw_state["content_hash"],
                reviewed_lines=[ReviewedLine(**line) for line in raw_state.get("reviewed_lines", [])],
                last_analyzed_at=raw_state.get("last_analyzed_at"),
            )
        except (KeyError, TypeError) as e:
            logger.warning(f"Ignoring malformed cache entry for '{key}': {e}")
            return None

    def save(self, key: str, state: FileReviewState) -> bool:
        return self._write(key, {"state": asdict(state)})

    def last_reconciled_revision(self, unit_key: str) -> Optional[str]:
        document = self._read(f"reconciled:{unit_key}")
        if document is None:
            return None
        return document.get("revision")

    def record_reconciled_revision(self, unit_key: str, revision: str) -> bool:
        return self._write(f"reconciled:{unit_key}", {"revision": revision})
