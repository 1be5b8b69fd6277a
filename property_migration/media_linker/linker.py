"""
Media linking for migrated properties.

Images and videos arrive embedded in the property document, usually as a
JSON-encoded array. Each item becomes one child row keyed by
``(property_id, sort_order)`` where ``sort_order`` is the item's position in
the array. After the upsert, rows at positions the new array no longer has
are deleted, so a rerun after the source list shrank leaves no stale rows.
"""

import logging
import threading
from collections.abc import Iterable, Mapping
from typing import Any, Optional

from ..common.concurrency import bounded_map
from ..common.config_loader import MigrationConfig
from ..common.db_operations import (
    IMAGES_TABLE,
    PROPERTIES_TABLE,
    VIDEOS_TABLE,
    DatabaseError,
    RelationalStore,
)
from ..common.report import ErrorEntry, PhaseStats
from ..normalizer.fields import parse_embedded_array, parse_integer, safe_string, truncate
from ..source_extractor.base import SourceRecord

logger = logging.getLogger(__name__)

PHASE = "media"
MEDIA_KEY = ("property_id", "sort_order")
MAX_FILE_SIZE = 2_147_483_647
TITLE_MAX_LENGTH = 255
FILE_ID_MAX_LENGTH = 64
FILE_TYPE_MAX_LENGTH = 50
FILENAME_MAX_LENGTH = 255
DEFAULT_IMAGE_TYPE = "image/jpeg"

VIDEO_PROVIDERS = (
    ("youtube", ("youtube.com", "youtu.be")),
    ("vimeo", ("vimeo.com",)),
)


class MediaLinkError(Exception):
    """Raised when media cannot be linked to its parent property."""
    pass


def detect_video_type(url: str) -> str:
    """Return 'youtube', 'vimeo' or 'direct' from the video URL."""
    lower = url.lower()
    for video_type, patterns in VIDEO_PROVIDERS:
        if any(pattern in lower for pattern in patterns):
            return video_type
    return "direct"


def _is_url(value: Any) -> bool:
    return isinstance(value, str) and value.strip().lower().startswith(("http://", "https://"))


def parse_media_items(raw: Any) -> list[Any]:
    """
    Decode an embedded media list.

    A bare http(s) string that is not JSON is treated as a one-item list, and
    a single object as a one-item list. Anything else unparsable is empty.
    """
    parsed = parse_embedded_array(raw)
    if parsed is None:
        return [raw.strip()] if _is_url(raw) else []
    if isinstance(parsed, Mapping):
        return [parsed]
    return list(parsed)


def _item_url(item: Any, *fields: str) -> Optional[str]:
    if _is_url(item):
        return item.strip()
    if isinstance(item, Mapping):
        for name in fields:
            url = safe_string(item.get(name))
            if url:
                return url
    return None


def _item_field(item: Any, name: str) -> Any:
    return item.get(name) if isinstance(item, Mapping) else None


def _source_file_id(item: Any) -> Optional[str]:
    return truncate(safe_string(_item_field(item, "id") or _item_field(item, "$id")), FILE_ID_MAX_LENGTH)


def build_image_rows(property_id: int, raw_images: Any) -> list[dict[str, Any]]:
    """Build image rows; items without a URL are dropped before indexing."""
    items = [(item, _item_url(item, "fileUrl", "url", "href")) for item in parse_media_items(raw_images)]
    items = [(item, url) for item, url in items if url]

    return [
        {
            "property_id": property_id,
            "sort_order": index,
            "image_url": url,
            "image_title": truncate(
                safe_string(_item_field(item, "title")) or f"Property Image {index + 1}",
                TITLE_MAX_LENGTH,
            ),
            "is_primary": index == 0,
            "source_file_id": _source_file_id(item),
            "file_size": parse_integer(_item_field(item, "fileSize"), 0, MAX_FILE_SIZE),
            "file_type": truncate(
                safe_string(_item_field(item, "mimeType")) or DEFAULT_IMAGE_TYPE,
                FILE_TYPE_MAX_LENGTH,
            ),
            "original_filename": truncate(
                safe_string(_item_field(item, "name")) or f"image_{index + 1}",
                FILENAME_MAX_LENGTH,
            ),
        }
        for index, (item, url) in enumerate(items)
    ]


def build_video_rows(property_id: int, raw_videos: Any) -> list[dict[str, Any]]:
    items = [(item, _item_url(item, "url", "fileUrl", "href")) for item in parse_media_items(raw_videos)]
    items = [(item, url) for item, url in items if url]

    return [
        {
            "property_id": property_id,
            "sort_order": index,
            "video_url": url,
            "video_title": truncate(
                safe_string(_item_field(item, "title")) or f"Property Video {index + 1}",
                TITLE_MAX_LENGTH,
            ),
            "video_type": detect_video_type(url),
            "storage_provider": "appwrite" if "appwrite" in url.lower() else "external",
            "source_file_id": _source_file_id(item),
            "duration": parse_integer(_item_field(item, "duration"), 0, MAX_FILE_SIZE),
            "file_size": parse_integer(_item_field(item, "fileSize"), 0, MAX_FILE_SIZE),
        }
        for index, (item, url) in enumerate(items)
    ]


class MediaLinker:
    """
    Writes image and video rows for migrated properties.

    Parent ids come from `id_map` (filled by the batch migrator) and fall back
    to a lookup by external id, which is what a media-only rerun relies on.
    """

    def __init__(
        self,
        store: RelationalStore,
        config: MigrationConfig,
        id_map: Optional[Mapping[str, int]] = None,
    ):
        self.store = store
        self.config = config
        self.id_map: dict[str, int] = dict(id_map or {})
        self.errors: list[ErrorEntry] = []
        self.images_linked = 0
        self.videos_linked = 0
        self.stats = PhaseStats()

    def _parent_id(self, external_id: str) -> int:
        property_id = self.id_map.get(external_id)
        if property_id is not None:
            return property_id

        row = self.store.select_one(PROPERTIES_TABLE, {"external_id": external_id})
        if row is None:
            raise MediaLinkError(f"No migrated property with external id {external_id}")
        return row["id"]

    def _replace_children(self, table: str, property_id: int, rows: list[dict[str, Any]]) -> None:
        if rows:
            self.store.upsert(table, rows, conflict_key=MEDIA_KEY)
        removed = self.store.delete_children_beyond(
            table, "property_id", property_id, "sort_order", len(rows)
        )
        if removed:
            logger.debug(
                "Trimmed stale media rows",
                extra={"table": table, "property_id": property_id, "removed": removed},
            )

    def link_media(
        self,
        parent_external_id: str,
        raw_images: Any,
        raw_videos: Any,
    ) -> tuple[int, int]:
        """
        Upsert the media rows of one property and trim stale ones.

        Args:
            parent_external_id: External id of the migrated property
            raw_images: Embedded image list (JSON string, list or bare URL)
            raw_videos: Embedded video list

        Returns:
            ``(image_count, video_count)`` written for this property

        Raises:
            MediaLinkError: If the parent property does not exist
            DatabaseError: If writing the rows fails
        """
        property_id = self._parent_id(parent_external_id)

        image_rows = build_image_rows(property_id, raw_images)
        video_rows = build_video_rows(property_id, raw_videos)

        self._replace_children(IMAGES_TABLE, property_id, image_rows)
        self._replace_children(VIDEOS_TABLE, property_id, video_rows)

        return len(image_rows), len(video_rows)

    def _link_record(self, record: SourceRecord, dry_run: bool) -> tuple[int, int]:
        if not record.external_id:
            raise MediaLinkError("Source document has no $id")

        raw_images = record.raw("propertyImage")
        raw_videos = record.raw("videos")
        if dry_run:
            return len(build_image_rows(0, raw_images)), len(build_video_rows(0, raw_videos))
        return self.link_media(record.external_id, raw_images, raw_videos)

    def link_all(
        self,
        records: Iterable[SourceRecord],
        id_map: Optional[Mapping[str, int]] = None,
        cancel_event: Optional[threading.Event] = None,
        dry_run: bool = False,
    ) -> PhaseStats:
        """
        Link media for every record on the bounded worker pool.

        Returns:
            PhaseStats for the media phase; a record whose parent is missing
            or whose rows cannot be written is errored, the rest continue.
            The same object is kept on `self.stats`, so counts survive a
            failing record source
        """
        if id_map:
            self.id_map.update(id_map)

        stats = self.stats = PhaseStats()
        workers = self.config.migration.max_workers

        logger.info("Starting media linking", extra={"max_workers": workers, "dry_run": dry_run})

        def run_record(record: SourceRecord) -> tuple[int, int]:
            return self._link_record(record, dry_run)

        for record, counts, error in bounded_map(run_record, records, workers, cancel_event):
            stats.attempted += 1
            if error is None:
                images, videos = counts
                self.images_linked += images
                self.videos_linked += videos
                stats.succeeded += 1
                continue

            stats.errored += 1
            if isinstance(error, (MediaLinkError, DatabaseError)):
                message = str(error)
                logger.warning(
                    "Failed to link media",
                    extra={"external_id": record.external_id, "error": message},
                )
            else:
                message = f"{type(error).__name__}: {error}"
                logger.error(
                    "Unexpected error linking media",
                    extra={"external_id": record.external_id, "error": message},
                )
            self.errors.append(ErrorEntry(phase=PHASE, external_id=record.external_id, message=message))

        logger.info(
            "Media linking completed",
            extra={
                "attempted": stats.attempted,
                "succeeded": stats.succeeded,
                "errored": stats.errored,
                "images": self.images_linked,
                "videos": self.videos_linked,
            },
        )
        return stats
