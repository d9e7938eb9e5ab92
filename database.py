"""JSON document store for users, video metadata and reactions.

The whole document lives in memory and is rewritten to ``db.json`` after
every mutation. A single re-entrant lock serializes read-modify-persist
sequences across request threads and the background synchronizer.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterable, Iterator, Optional, TypeVar

from pydantic import ValidationError

from errors import NotFound, StorageFailure
from schemas import Comment, Database, ReactionType, User, VideoMetadata

logger = logging.getLogger(__name__)

T = TypeVar("T")


_COUNTERS = ("views", "likes", "dislikes")
_REACTION_VALUES = frozenset(kind.value for kind in ReactionType)


def _quarantine(path: Path) -> None:
    target = path.with_name(f"{path.name}.corrupt-{time.strftime('%Y%m%d%H%M%S')}")
    try:
        os.replace(path, target)
    except OSError as exc:
        logger.exception("Could not move unreadable database %s aside", path)
        raise StorageFailure("Failed to set aside unreadable data") from exc
    logger.warning("Moved unreadable database %s to %s, starting empty", path, target)


def _valid_entries(model, items: list, kind: str) -> list:
    kept = []
    for item in items:
        try:
            model.model_validate(item)
        except ValidationError as exc:
            logger.warning("Dropping invalid %s entry: %s", kind, exc)
            continue
        kept.append(item)
    return kept


def _is_counter(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def _salvage_video(video_id: str, entry) -> dict:
    if not isinstance(entry, dict):
        logger.warning("Resetting invalid metadata for video %s", video_id)
        return {}
    repaired = dict(entry)
    for name in _COUNTERS:
        if name in entry and not _is_counter(entry[name]):
            logger.warning("Resetting %s of video %s from %r to 0", name, video_id, entry[name])
            repaired[name] = 0
    comments = entry.get("comments", [])
    if isinstance(comments, list):
        repaired["comments"] = _valid_entries(Comment, comments, "comment")
    else:
        logger.warning("Dropping non-list comments of video %s", video_id)
        repaired["comments"] = []
    return repaired


def _salvage_ledger(video_id: str, ledger: dict) -> dict:
    kept = {}
    for key, value in ledger.items():
        if isinstance(value, str) and value in _REACTION_VALUES:
            kept[key] = value
        else:
            logger.warning("Dropping invalid reaction %r by %s on video %s", value, key, video_id)
    return kept


def _salvage(document: dict) -> dict:
    """Repair a parsed document entry by entry before validation."""
    repaired = dict(document)
    users = document.get("users")
    if isinstance(users, list):
        repaired["users"] = _valid_entries(User, users, "user")
    videos = document.get("videos")
    if isinstance(videos, dict):
        repaired["videos"] = {vid: _salvage_video(vid, entry) for vid, entry in videos.items()}
    reactions = document.get("reactions")
    if isinstance(reactions, dict):
        ledgers = {}
        for vid, ledger in reactions.items():
            if isinstance(ledger, dict):
                ledgers[vid] = _salvage_ledger(vid, ledger)
            else:
                logger.warning("Dropping invalid reaction ledger for video %s", vid)
        repaired["reactions"] = ledgers
    return repaired


class JsonStore:
    """Single-writer store backed by one JSON file."""

    def __init__(self, path: Path, data: Optional[Database] = None) -> None:
        self.path = Path(path)
        self._data = data if data is not None else Database()
        self._lock = threading.RLock()
        self._last_written: Optional[str] = None

    @classmethod
    def load(cls, path: Path) -> JsonStore:
        """Read the document at *path*, falling back to an empty one.

        Damaged entries are repaired or dropped one by one so that a single
        bad value never costs the rest of the document. A file that cannot be
        parsed at all is moved aside to ``<name>.corrupt-<timestamp>`` before
        the store starts empty.
        """
        path = Path(path)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.info("No database at %s, starting empty", path)
            return cls(path)
        except UnicodeDecodeError as exc:
            logger.warning("Database %s is not valid UTF-8: %s", path, exc)
            _quarantine(path)
            return cls(path)
        except OSError as exc:
            logger.exception("Could not read database %s", path)
            raise StorageFailure("Failed to read data") from exc
        try:
            document = json.loads(raw)
        except ValueError as exc:
            logger.warning("Database %s is not valid JSON: %s", path, exc)
            _quarantine(path)
            return cls(path)
        if not isinstance(document, dict):
            logger.warning("Database %s is not a JSON object", path)
            _quarantine(path)
            return cls(path)
        try:
            data = Database.model_validate(_salvage(document))
        except ValidationError as exc:
            logger.warning("Database %s is invalid: %s", path, exc)
            _quarantine(path)
            return cls(path)
        store = cls(path, data)
        store._last_written = raw
        return store

    @contextmanager
    def read(self) -> Iterator[Database]:
        """Yield the document for a consistent read. Do not mutate it."""
        with self._lock:
            yield self._data

    @contextmanager
    def transaction(self) -> Iterator[Database]:
        """Yield the document for mutation and persist it on exit.

        If the block or the persist raises, the in-memory document is rolled
        back to its state before the transaction.
        """
        with self._lock:
            before = self._data.model_copy(deep=True)
            try:
                yield self._data
                self.persist()
            except BaseException:
                self._data = before
                raise

    def persist(self) -> None:
        """Atomically rewrite the whole document. No-op if nothing changed."""
        with self._lock:
            text = self._data.model_dump_json(by_alias=True, indent=2)
            if text == self._last_written:
                return
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                fd, tmp_name = tempfile.mkstemp(
                    dir=self.path.parent, prefix=".db-", suffix=".tmp"
                )
                try:
                    with os.fdopen(fd, "w", encoding="utf-8") as fh:
                        fh.write(text)
                        fh.flush()
                        os.fsync(fh.fileno())
                    os.replace(tmp_name, self.path)
                except BaseException:
                    Path(tmp_name).unlink(missing_ok=True)
                    raise
            except OSError as exc:
                logger.exception("Failed to persist database to %s", self.path)
                raise StorageFailure("Failed to save data") from exc
            self._last_written = text

    def get_video(self, video_id: str, known_ids: Iterable[str]) -> Optional[VideoMetadata]:
        """Return a copy of a catalog video's metadata.

        Zeroed metadata is created (and persisted) for a known id that has
        none yet. Returns None for ids outside the current catalog.
        """
        if video_id not in set(known_ids):
            return None
        with self._lock:
            if video_id not in self._data.videos:
                with self.transaction() as data:
                    data.videos[video_id] = VideoMetadata()
            return self._data.videos[video_id].model_copy(deep=True)

    def mutate(
        self,
        video_id: str,
        known_ids: Iterable[str],
        fn: Callable[[Database, VideoMetadata], T],
    ) -> T:
        """Apply *fn* to a catalog video's metadata inside a transaction.

        Raises NotFound for ids outside the current catalog.
        """
        if video_id not in set(known_ids):
            raise NotFound("Video not found")
        with self.transaction() as data:
            meta = data.videos.setdefault(video_id, VideoMetadata())
            return fn(data, meta)
