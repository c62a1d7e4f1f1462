"""Tests for idempotent lesson-pack publishing."""
import asyncio
import json

import pytest

from conftest import make_pack_data, oauth_config
from lessonpack.config import CaseLabels, settings
from lessonpack.models.lesson_pack import LessonPack
from lessonpack.services.credentials import DISABLED, PublishConfigurationError
from lessonpack.services.document_store import GoogleDocsStore, RemoteServiceError
from lessonpack.services.publisher import (
    FINGERPRINT_PROPERTY_KEY,
    LessonPackPublisher,
    bind_publisher,
    content_fingerprint,
    document_url,
    publish_lesson_pack,
)

BP = CaseLabels(gov="Government Case", opp="Opposition Case")


def _publisher(store, sleep, **kwargs) -> LessonPackPublisher:
    kwargs.setdefault("append_examples_table", False)
    kwargs.setdefault("page_break_before_appendix", False)
    return LessonPackPublisher(
        store,
        folder_id="folder-1",
        max_retries=3,
        base_delay=1.0,
        sleep=sleep,
        labels=BP,
        **kwargs,
    )


def _kinds(requests):
    return [next(iter(req)) for req in requests]


# ---------------------------------------------------------------------------
# Fingerprint
# ---------------------------------------------------------------------------

def test_fingerprint_is_stable_sha256(lesson_pack):
    first = content_fingerprint(lesson_pack)
    second = content_fingerprint(LessonPack.model_validate(make_pack_data()))

    assert first == second
    assert len(first) == 64
    assert all(c in "0123456789abcdef" for c in first)


def test_fingerprint_ignores_input_metadata(lesson_pack):
    renamed = LessonPack.model_validate(make_pack_data(filename="other.pdf", kind="pdf"))
    assert content_fingerprint(renamed) == content_fingerprint(lesson_pack)


def test_fingerprint_ignores_non_core_sections(lesson_pack):
    data = make_pack_data()
    data["drills"] = ["A completely different drill"]
    assert content_fingerprint(LessonPack.model_validate(data)) == content_fingerprint(lesson_pack)


def test_fingerprint_changes_with_core_content(lesson_pack):
    data = make_pack_data()
    data["govCase"][0]["claim"] = "Bans cut waste dramatically"
    assert content_fingerprint(LessonPack.model_validate(data)) != content_fingerprint(lesson_pack)


# ---------------------------------------------------------------------------
# Publish
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_new_content_creates_one_document(store, sleep, lesson_pack):
    result = await _publisher(store, sleep).publish(lesson_pack)

    assert store.count("create_file") == 1
    _, name, parents, props = next(c for c in store.calls if c[0] == "create_file")
    assert name == "Environment"
    assert parents == ["folder-1"]
    assert props == {FINGERPRINT_PROPERTY_KEY: content_fingerprint(lesson_pack)}

    assert result.updated is False
    assert result.doc_id == "doc-1"
    assert result.doc_url == "https://docs.google.com/document/d/doc-1/edit?usp=drivesdk"
    assert result.fingerprint == content_fingerprint(lesson_pack)

    requests = store.requests_for("doc-1")
    assert requests[0] == {"insertText": {"location": {"index": 1}, "text": "Environment\n"}}
    assert "deleteContentRange" not in _kinds(requests)


@pytest.mark.asyncio
async def test_search_is_scoped_to_folder(store, sleep, lesson_pack):
    await _publisher(store, sleep).publish(lesson_pack)

    query = next(c for c in store.calls if c[0] == "list_files")[1]
    assert "'folder-1' in parents" in query
    assert "mimeType='application/vnd.google-apps.document'" in query
    assert "trashed=false" in query
    assert (
        f"appProperties has {{ key='{FINGERPRINT_PROPERTY_KEY}' "
        f"and value='{content_fingerprint(lesson_pack)}' }}"
    ) in query


@pytest.mark.asyncio
async def test_republish_clears_and_rewrites_same_document(store, sleep, lesson_pack):
    publisher = _publisher(store, sleep)
    first = await publisher.publish(lesson_pack)
    end_after_first = store.docs[first.doc_id]["end"]

    second = await publisher.publish(lesson_pack)

    assert store.count("create_file") == 1
    assert second.doc_id == first.doc_id
    assert second.updated is True

    clear_batch = store.batches[first.doc_id][1]
    assert clear_batch == [
        {"deleteContentRange": {"range": {"startIndex": 1, "endIndex": end_after_first - 1}}}
    ]
    rewrite = store.batches[first.doc_id][2]
    assert rewrite[0] == {"insertText": {"location": {"index": 1}, "text": "Environment\n"}}
    assert store.docs[first.doc_id]["end"] == end_after_first


@pytest.mark.asyncio
async def test_existing_empty_document_is_not_cleared(store, sleep, lesson_pack):
    doc_id = store.seed(
        "Environment", {FINGERPRINT_PROPERTY_KEY: content_fingerprint(lesson_pack)}, end_index=2
    )

    result = await _publisher(store, sleep).publish(lesson_pack)

    assert result.doc_id == doc_id
    assert result.updated is True
    assert store.count("create_file") == 0
    assert "deleteContentRange" not in _kinds(store.requests_for(doc_id))


@pytest.mark.asyncio
async def test_other_fingerprints_are_not_reused(store, sleep, lesson_pack):
    store.seed("Something else", {FINGERPRINT_PROPERTY_KEY: "0" * 64}, end_index=50)

    result = await _publisher(store, sleep).publish(lesson_pack)

    assert result.updated is False
    assert store.count("create_file") == 1


@pytest.mark.asyncio
async def test_search_failure_falls_back_to_create(store, sleep, lesson_pack):
    store.seed("Environment", {FINGERPRINT_PROPERTY_KEY: content_fingerprint(lesson_pack)})
    store.fail_next("list_files", RemoteServiceError(403, "forbidden"))

    result = await _publisher(store, sleep).publish(lesson_pack)

    assert result.updated is False
    assert store.count("create_file") == 1


@pytest.mark.asyncio
async def test_transient_errors_are_retried_per_call(store, sleep, lesson_pack):
    store.fail_next("batch_update", RemoteServiceError(503), RemoteServiceError(429))

    result = await _publisher(store, sleep).publish(lesson_pack)

    assert result.doc_id == "doc-1"
    assert store.count("batch_update") == 3
    assert sleep.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_non_transient_error_fails_publish(store, sleep, lesson_pack):
    store.fail_next("create_file", RemoteServiceError(400, "bad request"))

    with pytest.raises(RemoteServiceError):
        await _publisher(store, sleep).publish(lesson_pack)

    assert store.count("create_file") == 1
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_missing_file_id_raises(store, sleep, lesson_pack):
    async def create_without_id(name, parents, app_properties):
        return {}

    store.create_file = create_without_id

    with pytest.raises(RuntimeError, match="no file ID"):
        await _publisher(store, sleep).publish(lesson_pack)


@pytest.mark.asyncio
async def test_url_falls_back_when_link_missing(store, sleep, lesson_pack):
    async def get_file(file_id, fields="id, webViewLink"):
        return {"id": file_id}

    store.get_file = get_file

    result = await _publisher(store, sleep).publish(lesson_pack)

    assert result.doc_url == document_url("doc-1")
    assert result.doc_url == "https://docs.google.com/document/d/doc-1/edit"


@pytest.mark.asyncio
async def test_concurrent_publishes_share_one_document(store, sleep, lesson_pack):
    publisher = _publisher(store, sleep)

    first, second = await asyncio.gather(publisher.publish(lesson_pack), publisher.publish(lesson_pack))

    assert store.count("create_file") == 1
    assert first.doc_id == second.doc_id
    assert {first.updated, second.updated} == {False, True}


# ---------------------------------------------------------------------------
# Examples table appendix
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_examples_table_two_phase(store, sleep, lesson_pack):
    await _publisher(store, sleep, append_examples_table=True).publish(lesson_pack)

    batches = store.batches["doc-1"]
    assert len(batches) == 3
    content, shape, fill = batches

    assert _kinds(shape) == ["insertTable"]
    table = shape[0]["insertTable"]
    assert table["rows"] == 4
    assert table["columns"] == 3

    inserted = sum(len(r["insertText"]["text"].encode("utf-16-le")) // 2 for r in content if "insertText" in r)
    assert table["location"]["index"] == inserted + 1

    # The table was looked up between the two phases.
    kinds = [c[0] for c in store.calls]
    shape_at = [i for i, k in enumerate(kinds) if k == "batch_update"][1]
    assert kinds[shape_at + 1] == "get_document"

    fill_indexes = [r["insertText"]["location"]["index"] for r in fill if "insertText" in r]
    assert fill_indexes == sorted(fill_indexes, reverse=True)
    assert len(fill_indexes) == 12

    fill_texts = [r["insertText"]["text"] for r in fill if "insertText" in r]
    assert fill_texts[-3:] == ["Sources", "Why it matters", "Example"]
    bold = [r for r in fill if "updateTextStyle" in r]
    assert len(bold) == 3


def _text_units(requests):
    return sum(len(r["insertText"]["text"].encode("utf-16-le")) // 2 for r in requests if "insertText" in r)


@pytest.mark.asyncio
async def test_page_break_precedes_examples_bank(store, sleep, lesson_pack):
    publisher = _publisher(store, sleep, append_examples_table=True, page_break_before_appendix=True)

    await publisher.publish(lesson_pack)

    content, shape, _fill = store.batches["doc-1"]
    kinds = _kinds(content)
    assert kinds.count("insertPageBreak") == 1
    heading_at = next(
        i for i, r in enumerate(content)
        if "insertText" in r and r["insertText"]["text"] == "Examples Bank\n"
    )
    assert kinds.index("insertPageBreak") < heading_at
    # The break occupies one index, so the table shifts by one.
    assert shape[0]["insertTable"]["location"]["index"] == _text_units(content) + 2


@pytest.mark.asyncio
async def test_page_break_follows_settings(store, sleep, lesson_pack, monkeypatch):
    monkeypatch.setattr(settings, "PAGE_BREAK_BEFORE_APPENDIX", True)

    publisher = LessonPackPublisher(
        store, max_retries=0, sleep=sleep, labels=BP, append_examples_table=False
    )
    await publisher.publish(lesson_pack)

    assert "insertPageBreak" in _kinds(store.requests_for("doc-1"))


@pytest.mark.asyncio
async def test_no_page_break_by_default(store, sleep, lesson_pack):
    await _publisher(store, sleep).publish(lesson_pack)
    assert "insertPageBreak" not in _kinds(store.requests_for("doc-1"))


@pytest.mark.asyncio
async def test_table_skipped_when_not_found(store, sleep, lesson_pack):
    original = store.get_document

    async def get_document_without_tables(document_id):
        doc = await original(document_id)
        doc["body"]["content"] = [el for el in doc["body"]["content"] if "table" not in el]
        return doc

    store.get_document = get_document_without_tables

    await _publisher(store, sleep, append_examples_table=True).publish(lesson_pack)

    assert len(store.batches["doc-1"]) == 2


# ---------------------------------------------------------------------------
# publish_lesson_pack
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_disabled_config_publishes_nothing(store, lesson_pack):
    result = await publish_lesson_pack(DISABLED, lesson_pack, store=store)

    assert result is None
    assert store.calls == []


# ---------------------------------------------------------------------------
# bind_publisher
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_bind_disabled_publishes_nothing(lesson_pack):
    publish = bind_publisher(DISABLED)
    assert await publish(lesson_pack) is None


def test_bind_missing_oauth_token_raises_immediately(tmp_path):
    with pytest.raises(PublishConfigurationError, match="OAuth token file not found"):
        bind_publisher(oauth_config(str(tmp_path / "missing.json")))


def test_bind_oauth_token_binds_one_store(tmp_path):
    token_path = tmp_path / "token.json"
    token_path.write_text(json.dumps({"refresh_token": "1//r"}), encoding="utf-8")

    publish = bind_publisher(oauth_config(str(token_path)))

    assert isinstance(publish.keywords["store"], GoogleDocsStore)
