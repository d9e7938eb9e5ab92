"""Video catalog sources and metadata synchronization."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Sequence
from urllib.parse import quote

from pydantic import TypeAdapter

from config import Settings
from database import JsonStore
from schemas import VideoDescriptor, VideoMetadata, VideoSummary

logger = logging.getLogger(__name__)

VIDEO_EXTENSIONS = {".mp4", ".m4v", ".mov", ".webm", ".mkv", ".ogv", ".ogg"}

_descriptor_list = TypeAdapter(List[VideoDescriptor])


class DirectoryCatalog:
    """Videos are the allow-listed files directly inside one directory."""

    def __init__(self, videos_dir: Path) -> None:
        self.videos_dir = Path(videos_dir)

    def entries(self) -> List[VideoDescriptor]:
        if not self.videos_dir.is_dir():
            logger.warning("Videos directory %s does not exist", self.videos_dir)
            return []
        entries = []
        for path in sorted(self.videos_dir.iterdir()):
            if path.suffix.lower() not in VIDEO_EXTENSIONS or not path.is_file():
                continue
            mtime = path.stat().st_mtime
            entries.append(
                VideoDescriptor(
                    id=path.name,
                    title=path.stem,
                    url=f"/videos/{quote(path.name)}",
                    uploaded_at=datetime.fromtimestamp(mtime, tz=timezone.utc),
                )
            )
        return entries

    def resolve(self, file_id: str) -> Optional[Path]:
        """Return the path of a listed video file, or None."""
        if not file_id or file_id != Path(file_id).name or file_id in (".", ".."):
            return None
        path = self.videos_dir / file_id
        if path.suffix.lower() not in VIDEO_EXTENSIONS or not path.is_file():
            return None
        return path


class StaticCatalog:
    """A fixed list of remotely hosted videos."""

    def __init__(self, entries: Sequence[VideoDescriptor]) -> None:
        self._entries = list(entries)

    @classmethod
    def from_file(cls, path: Path) -> StaticCatalog:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        entries = _descriptor_list.validate_python(raw)
        ids = [e.id for e in entries]
        if len(ids) != len(set(ids)):
            raise ValueError(f"Duplicate video ids in catalog {path}")
        return cls(entries)

    def entries(self) -> List[VideoDescriptor]:
        return list(self._entries)

    def resolve(self, file_id: str) -> Optional[Path]:
        return None


def sync_catalog(store: JsonStore, catalog) -> List[VideoSummary]:
    """Reconcile stored metadata with the catalog and list its videos.

    Metadata and reactions of videos no longer in the catalog are dropped,
    new videos get zeroed metadata. Newest uploads come first.
    """
    entries = catalog.entries()
    ids = {e.id for e in entries}
    with store.transaction() as data:
        removed = [key for key in data.videos if key not in ids]
        for key in removed:
            del data.videos[key]
        for key in [key for key in data.reactions if key not in ids]:
            del data.reactions[key]
        added = [e.id for e in entries if e.id not in data.videos]
        for key in added:
            data.videos[key] = VideoMetadata()
        summaries = [
            VideoSummary(
                id=e.id,
                title=e.title,
                url=e.url,
                poster_url=e.poster_url,
                views=data.videos[e.id].views,
                likes=data.videos[e.id].likes,
                dislikes=data.videos[e.id].dislikes,
                comments_count=len(data.videos[e.id].comments),
                uploaded_at=e.uploaded_at,
            )
            for e in entries
        ]
    if added or removed:
        logger.info("Catalog sync: %d added, %d removed", len(added), len(removed))
    summaries.sort(key=lambda s: s.uploaded_at, reverse=True)
    return summaries


def known_ids(catalog) -> List[str]:
    return [e.id for e in catalog.entries()]


def catalog_from_settings(settings: Settings):
    """Static catalog when ``CATALOG_FILE`` is set, otherwise scan the videos directory."""
    if settings.catalog_file is not None:
        return StaticCatalog.from_file(settings.catalog_file)
    return DirectoryCatalog(settings.videos_dir)
