"""
Idempotent publishing of lesson packs to Google Docs.

Public API
----------
content_fingerprint(pack) -> str
LessonPackPublisher(store, ...).publish(pack) -> PublishResult
publish_lesson_pack(config, pack, store=None) -> PublishResult | None
bind_publisher(config) -> async pack -> PublishResult | None (credentials checked now)

A pack is identified by a SHA-256 fingerprint over its semantic core (title,
motion, context and both argument cases), stored on the Drive file as an app
property.  Re-publishing the same content finds that file, clears its body
and rewrites it; new content creates a new document.
"""
from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import functools
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, TypeVar

from lessonpack.config import CaseLabels, settings
from lessonpack.models.lesson_pack import LessonPack
from lessonpack.services.credentials import DISABLED, PublishConfig, build_credentials
from lessonpack.services.document_store import (
    GOOGLE_DOC_MIME_TYPE,
    DocumentStore,
    GoogleDocsStore,
)
from lessonpack.services.renderer import (
    DeleteContentRange,
    DocsBuilder,
    build_table_fill,
    examples_table,
    locate_table_cells,
    render_with_cursor,
    to_requests,
)
from lessonpack.services.retry import with_retry
from lessonpack.utils.helpers import canonical_json, generate_hash

logger = logging.getLogger(__name__)

T = TypeVar("T")

FINGERPRINT_PROPERTY_KEY = "debatingnotes_fingerprint"
_FINGERPRINT_FIELDS = {"title", "motion_or_topic", "context", "gov_case", "opp_case"}

# Serialises search-then-create for a given fingerprint within this process.
# Entries are dropped once nobody holds or waits for them.
_fingerprint_locks: Dict[str, "_FingerprintLock"] = {}


class _FingerprintLock:
    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.users = 0


@contextlib.asynccontextmanager
async def _fingerprint_guard(fingerprint: str) -> AsyncIterator[None]:
    entry = _fingerprint_locks.get(fingerprint)
    if entry is None:
        entry = _fingerprint_locks[fingerprint] = _FingerprintLock()
    entry.users += 1
    try:
        async with entry.lock:
            yield
    finally:
        entry.users -= 1
        if entry.users == 0:
            del _fingerprint_locks[fingerprint]


@dataclasses.dataclass
class PublishResult:
    doc_id: str
    doc_url: str
    fingerprint: str
    updated: bool


def content_fingerprint(pack: LessonPack) -> str:
    """
    SHA-256 over the canonical JSON of the pack's semantic core.

    ``inputMetadata`` is excluded so the same content arriving under another
    filename maps to the same document.
    """
    core = pack.model_dump(mode="json", by_alias=True, include=_FINGERPRINT_FIELDS)
    return generate_hash(canonical_json(core))


def document_url(doc_id: str) -> str:
    return f"https://docs.google.com/document/d/{doc_id}/edit"


def _body_end_index(document: Dict[str, Any]) -> Optional[int]:
    content = (document.get("body") or {}).get("content") or []
    if not content:
        return None
    return content[-1].get("endIndex")


class LessonPackPublisher:
    """Publishes packs through a DocumentStore, retrying transient failures."""

    def __init__(
        self,
        store: DocumentStore,
        folder_id: Optional[str] = None,
        max_retries: Optional[int] = None,
        base_delay: Optional[float] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        append_examples_table: Optional[bool] = None,
        labels: Optional[CaseLabels] = None,
        page_break_before_appendix: Optional[bool] = None,
    ) -> None:
        self.store = store
        self.folder_id = folder_id
        self.max_retries = settings.PUBLISH_MAX_RETRIES if max_retries is None else max_retries
        self.base_delay = settings.PUBLISH_BASE_DELAY if base_delay is None else base_delay
        self._sleep = sleep or asyncio.sleep
        self.append_examples_table = (
            settings.APPEND_EXAMPLES_TABLE
            if append_examples_table is None
            else append_examples_table
        )
        self.labels = labels
        self.page_break_before_appendix = (
            settings.PAGE_BREAK_BEFORE_APPENDIX
            if page_break_before_appendix is None
            else page_break_before_appendix
        )

    async def _call(self, operation_name: str, fn: Callable[[], Awaitable[T]]) -> T:
        return await with_retry(
            fn,
            max_retries=self.max_retries,
            base_delay=self.base_delay,
            operation_name=operation_name,
            sleep=self._sleep,
        )

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def _search_query(self, fingerprint: str) -> str:
        query = (
            f"mimeType='{GOOGLE_DOC_MIME_TYPE}' and trashed=false and "
            f"appProperties has {{ key='{FINGERPRINT_PROPERTY_KEY}' and value='{fingerprint}' }}"
        )
        if self.folder_id:
            query = f"'{self.folder_id}' in parents and {query}"
        return query

    async def find_existing(self, fingerprint: str) -> Optional[str]:
        """
        Id of a document already carrying *fingerprint*, else ``None``.

        The lookup is an optimisation: any failure is logged and treated as
        "not found" so publishing falls back to creating a new document.
        """
        try:
            files = await self._call(
                "Drive file search", lambda: self.store.list_files(self._search_query(fingerprint))
            )
        except Exception as exc:
            logger.warning("Failed to search for existing documents: %s", exc)
            return None

        for file in files:
            props = file.get("appProperties") or {}
            if props.get(FINGERPRINT_PROPERTY_KEY) == fingerprint:
                logger.info(
                    "Found existing document with matching fingerprint: %s (%s)",
                    file.get("name"),
                    file.get("id"),
                )
                return file.get("id")
        return None

    # ------------------------------------------------------------------
    # Remote steps
    # ------------------------------------------------------------------

    async def clear_document(self, doc_id: str) -> None:
        """Delete the whole body, keeping the mandatory trailing newline."""
        document = await self._call(
            "Get existing document", lambda: self.store.get_document(doc_id)
        )
        end_index = _body_end_index(document)
        if not end_index or end_index - 1 <= 1:
            logger.debug("Document %s is already empty — nothing to clear", doc_id)
            return

        requests = to_requests([DeleteContentRange(start=1, end=end_index - 1)])
        await self._call(
            "Clear existing document content",
            lambda: self.store.batch_update(doc_id, requests),
        )

    async def create_document(self, title: str, fingerprint: str) -> str:
        parents = [self.folder_id] if self.folder_id else None
        created = await self._call(
            "Create new document",
            lambda: self.store.create_file(
                title, parents, {FINGERPRINT_PROPERTY_KEY: fingerprint}
            ),
        )
        doc_id = created.get("id")
        if not doc_id:
            raise RuntimeError("Failed to create Google Doc – no file ID returned")
        return doc_id

    async def write_content(self, doc_id: str, pack: LessonPack) -> None:
        instructions, cursor = render_with_cursor(
            pack, self.labels, page_break_before_appendix=self.page_break_before_appendix
        )
        requests = to_requests(instructions)
        if requests:
            await self._call(
                "Apply document content",
                lambda: self.store.batch_update(doc_id, requests),
            )

        if self.append_examples_table and pack.examples_bank:
            await self._append_table(doc_id, pack, cursor)

    async def _append_table(self, doc_id: str, pack: LessonPack, cursor: int) -> None:
        block = examples_table(pack)
        builder = DocsBuilder(start_index=cursor)
        at_index = builder.add_table_shape(block)

        # Phase one: create the empty table so the store assigns cell offsets.
        shape = to_requests(builder.instructions)
        await self._call("Insert table", lambda: self.store.batch_update(doc_id, shape))

        # Phase two: discover the offsets and fill the cells.
        document = await self._call("Get document", lambda: self.store.get_document(doc_id))
        cells = locate_table_cells(document, at_index)
        if not cells:
            logger.warning("Inserted table not found in document %s — skipping fill", doc_id)
            return

        fill = to_requests(build_table_fill(block, cells))
        if fill:
            await self._call("Fill table", lambda: self.store.batch_update(doc_id, fill))

    async def resolve_url(self, doc_id: str) -> str:
        metadata = await self._call(
            "Get document URL", lambda: self.store.get_file(doc_id, "webViewLink")
        )
        return metadata.get("webViewLink") or document_url(doc_id)

    # ------------------------------------------------------------------
    # Publish
    # ------------------------------------------------------------------

    async def publish(self, pack: LessonPack) -> PublishResult:
        fingerprint = content_fingerprint(pack)
        async with _fingerprint_guard(fingerprint):
            return await self._publish_locked(pack, fingerprint)

    async def _publish_locked(self, pack: LessonPack, fingerprint: str) -> PublishResult:
        title = pack.resolve_title()
        existing_id = await self.find_existing(fingerprint)

        if existing_id:
            logger.info("Updating existing document: %s", title)
            doc_id = existing_id
            await self.clear_document(doc_id)
        else:
            logger.info("Creating new document: %s", title)
            doc_id = await self.create_document(title, fingerprint)

        await self.write_content(doc_id, pack)
        url = await self.resolve_url(doc_id)

        if existing_id:
            logger.info("✓ Updated existing document: %s", url)
        else:
            logger.info("✓ Created new document: %s", url)
        return PublishResult(
            doc_id=doc_id, doc_url=url, fingerprint=fingerprint, updated=bool(existing_id)
        )


async def publish_lesson_pack(
    config: PublishConfig,
    pack: LessonPack,
    store: Optional[DocumentStore] = None,
) -> Optional[PublishResult]:
    """Publish *pack* per *config*; ``None`` when publishing is disabled."""
    if not config.enabled:
        logger.info("Google publishing disabled (no credentials configured).")
        return None

    if store is None:
        credentials = build_credentials(config)
        if credentials is None:
            logger.info("Google publishing disabled (no auth client).")
            return None
        store = GoogleDocsStore(credentials)

    publisher = LessonPackPublisher(store, folder_id=config.export_folder_id)
    return await publisher.publish(pack)


def bind_publisher(
    config: PublishConfig,
) -> Callable[[LessonPack], Awaitable[Optional[PublishResult]]]:
    """
    Resolve credentials for *config* once and return a publish callable.

    Raises PublishConfigurationError straight away (e.g. a missing OAuth
    token file), so a batch fails before any generation work is spent.
    """
    if not config.enabled:
        return functools.partial(publish_lesson_pack, config)

    credentials = build_credentials(config)
    if credentials is None:
        return functools.partial(publish_lesson_pack, DISABLED)
    logger.info("Publishing credentials loaded (%s)", config.mode)
    return functools.partial(publish_lesson_pack, config, store=GoogleDocsStore(credentials))
