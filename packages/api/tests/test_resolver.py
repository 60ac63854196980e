# This project was developed with assistance from AI tools.
"""Tests for document identity resolution."""

import pytest

from admissions_api.services.resolver import (
    FileIndex,
    FileLink,
    LinkIdentifier,
    extract_identifier,
    normalize_title,
    resolve_documents,
    select_photo,
)
from admissions_api.services.salesforce import RecordStoreError

from .fake_store import (
    DOCUMENT_1,
    DOCUMENT_2,
    DOCUMENT_3,
    VERSION_1,
    VERSION_2,
    VERSION_3,
    FakeRecordStore,
)

SCOPE = ["006PROG0001", "001ACCT0001"]

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _link(doc_id: str, title: str, version: str | None, linked_to: str = "006PROG0001") -> FileLink:
    return FileLink(
        content_document_id=doc_id,
        linked_entity_id=linked_to,
        title=title,
        latest_version_id=version,
    )


def _doc(doc_id: str, name: str, link: str | None = None) -> dict:
    return {"Id": doc_id, "Name": name, "Document_Type__c": name, "Document_Link__c": link}


# ---------------------------------------------------------------------------
# Normalisation and extraction
# ---------------------------------------------------------------------------


def test_normalize_title_ignores_case_and_punctuation():
    assert normalize_title("Scan KTP") == normalize_title("scan-ktp!!") == "scanktp"


def test_normalize_title_handles_none():
    assert normalize_title(None) == ""


def test_extract_version_from_shepherd_url():
    link = f"https://x.my.salesforce.com/sfc/servlet.shepherd/version/download/{VERSION_1}?operationContext=S1"
    assert extract_identifier(link) == LinkIdentifier("version", VERSION_1)


def test_extract_document_from_lightning_url():
    assert extract_identifier(f"/lightning/r/ContentDocument/{DOCUMENT_1}/view") == LinkIdentifier(
        "document", DOCUMENT_1
    )


def test_extract_accepts_fifteen_character_ids():
    assert extract_identifier("/version/download/068000000000001") == LinkIdentifier("version", "068000000000001")


def test_extract_prefers_version_over_document():
    link = f"/lightning/r/ContentDocument/{DOCUMENT_1}/view?v={VERSION_2}"
    assert extract_identifier(link) == LinkIdentifier("version", VERSION_2)


def test_extract_ignores_ids_embedded_in_longer_tokens():
    assert extract_identifier(f"x{VERSION_1}x") is None


@pytest.mark.parametrize("link", [None, "", "https://drive.google.com/file/d/abc123/view", "lihat berkas"])
def test_extract_returns_none_without_identifier(link):
    assert extract_identifier(link) is None


# ---------------------------------------------------------------------------
# Index and photo selection
# ---------------------------------------------------------------------------


def test_file_index_first_seen_wins():
    index = FileIndex.build(
        [
            _link(DOCUMENT_1, "Rapor 1", VERSION_1),
            _link(DOCUMENT_1, "Rapor 1 (copy)", VERSION_2, linked_to="001ACCT0001"),
            _link(DOCUMENT_2, "rapor-1", VERSION_3),
        ]
    )
    assert index.version_of(DOCUMENT_1) == VERSION_1
    assert index.version_of(DOCUMENT_2) == VERSION_3
    assert index.by_title["rapor1"] == VERSION_1


def test_select_photo_prefers_pas_foto_title():
    links = [_link(DOCUMENT_2, "Rapor 1", VERSION_2), _link(DOCUMENT_1, "Pas Foto Siswa", VERSION_1)]
    assert select_photo(links).title == "Pas Foto Siswa"


def test_select_photo_takes_first_in_order_when_pas_foto_is_first():
    links = [_link(DOCUMENT_1, "Pas Foto Siswa", VERSION_1), _link(DOCUMENT_2, "Rapor 1", VERSION_2)]
    assert select_photo(links).title == "Pas Foto Siswa"


def test_select_photo_falls_back_to_first_entry():
    links = [_link(DOCUMENT_1, "Rapor 1", VERSION_1), _link(DOCUMENT_2, "Rapor 2", VERSION_2)]
    assert select_photo(links).title == "Rapor 1"


def test_select_photo_empty():
    assert select_photo([]) is None


# ---------------------------------------------------------------------------
# resolve_documents
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_direct_version_used_verbatim_even_when_not_indexed():
    store = FakeRecordStore()
    docs = [_doc("a01", "Scan KTP", f"/sfc/servlet.shepherd/version/download/{VERSION_3}")]

    result = await resolve_documents(store, docs, [_link(DOCUMENT_1, "Scan KTP", VERSION_1)], SCOPE)

    assert result.versions["a01"] == VERSION_3
    assert store.queries_matching("FROM ContentDocumentLink") == []


@pytest.mark.asyncio
async def test_indexed_document_resolves_to_latest_version():
    store = FakeRecordStore()
    docs = [_doc("a01", "Rapor 1", f"/lightning/r/ContentDocument/{DOCUMENT_2}/view")]
    links = [_link(DOCUMENT_1, "Rapor 1", VERSION_1), _link(DOCUMENT_2, "Something else", VERSION_2)]

    result = await resolve_documents(store, docs, links, SCOPE)

    assert result.versions["a01"] == VERSION_2
    assert store.queries == []


@pytest.mark.asyncio
async def test_title_match_when_link_has_no_identifier():
    store = FakeRecordStore()
    docs = [_doc("a01", "scan-ktp!!", "")]

    result = await resolve_documents(store, docs, [_link(DOCUMENT_1, "Scan KTP", VERSION_1)], SCOPE)

    assert result.versions["a01"] == VERSION_1


@pytest.mark.asyncio
async def test_unresolvable_document_is_none_not_an_error(caplog):
    store = FakeRecordStore()
    docs = [_doc("a01", "Scan Ijazah", "https://drive.google.com/file/d/abc/view")]

    result = await resolve_documents(store, docs, [_link(DOCUMENT_1, "Rapor 1", VERSION_1)], SCOPE)

    assert result.versions == {"a01": None}
    assert "falling back to title match" in caplog.text


@pytest.mark.asyncio
async def test_missing_documents_resolved_with_one_batch_query():
    store = FakeRecordStore()
    store.on(
        "FROM ContentDocumentLink",
        "ContentDocumentId IN",
        rows=[
            {
                "ContentDocumentId": DOCUMENT_2,
                "LinkedEntityId": "a01",
                "ContentDocument": {"Title": "Rapor 1_PMB", "LatestPublishedVersionId": VERSION_2},
            },
            {
                "ContentDocumentId": DOCUMENT_3,
                "LinkedEntityId": "001ACCT0001",
                "ContentDocument": {"Title": "Rapor 2_PMB", "LatestPublishedVersionId": VERSION_3},
            },
        ],
    )
    docs = [
        _doc("a01", "Rapor 1", f"/lightning/r/ContentDocument/{DOCUMENT_2}/view"),
        _doc("a02", "Rapor 2", f"/lightning/r/ContentDocument/{DOCUMENT_3}/view"),
        _doc("a03", "Rapor 3", f"/lightning/r/ContentDocument/{DOCUMENT_1}/view"),
    ]

    result = await resolve_documents(store, docs, [_link(DOCUMENT_1, "Pas Foto", VERSION_1)], SCOPE)

    assert result.versions == {"a01": VERSION_2, "a02": VERSION_3, "a03": VERSION_1}
    batch = store.queries_matching("FROM ContentDocumentLink")
    assert len(batch) == 1
    # only ids absent from the page are looked up, and the lookup is scoped
    assert DOCUMENT_1 not in batch[0]
    assert f"'{DOCUMENT_2}'" in batch[0] and f"'{DOCUMENT_3}'" in batch[0]
    assert "LinkedEntityId IN ('006PROG0001','001ACCT0001','a01','a02','a03')" in batch[0]


@pytest.mark.asyncio
async def test_fifteen_character_document_id_found_on_page():
    store = FakeRecordStore()
    docs = [_doc("a01", "Rapor 1", f"/lightning/r/ContentDocument/{DOCUMENT_2[:15]}/view")]
    links = [_link(DOCUMENT_2, "Something else", VERSION_2)]

    result = await resolve_documents(store, docs, links, SCOPE)

    assert result.versions["a01"] == VERSION_2
    assert store.queries == []


@pytest.mark.asyncio
async def test_fifteen_character_document_id_found_by_batch_lookup():
    store = FakeRecordStore()
    store.on(
        "FROM ContentDocumentLink",
        "ContentDocumentId IN",
        rows=[
            {
                "ContentDocumentId": DOCUMENT_2,
                "LinkedEntityId": "006PROG0001",
                "ContentDocument": {"Title": "Rapor 1_PMB", "LatestPublishedVersionId": VERSION_2},
            }
        ],
    )
    docs = [_doc("a01", "Rapor 1", f"/lightning/r/ContentDocument/{DOCUMENT_2[:15]}/view")]

    result = await resolve_documents(store, docs, [], SCOPE)

    assert result.versions["a01"] == VERSION_2
    (batch,) = store.queries_matching("FROM ContentDocumentLink")
    assert f"'{DOCUMENT_2[:15]}'" in batch


@pytest.mark.asyncio
async def test_title_match_falls_back_to_document_type():
    store = FakeRecordStore()
    docs = [{"Id": "a01", "Name": "Berkas 1", "Document_Type__c": "Scan KTP", "Document_Link__c": None}]

    result = await resolve_documents(store, docs, [_link(DOCUMENT_1, "scan ktp", VERSION_1)], SCOPE)

    assert result.versions["a01"] == VERSION_1


@pytest.mark.asyncio
async def test_document_outside_scope_falls_back_to_title():
    store = FakeRecordStore()
    docs = [_doc("a01", "Rapor 1", f"/lightning/r/ContentDocument/{DOCUMENT_2}/view")]

    result = await resolve_documents(store, docs, [_link(DOCUMENT_1, "RAPOR 1", VERSION_1)], SCOPE)

    assert result.versions["a01"] == VERSION_1


@pytest.mark.asyncio
async def test_batch_lookup_failure_propagates():
    store = FakeRecordStore()
    store.on("FROM ContentDocumentLink", error=RecordStoreError("boom", error_code="INVALID_QUERY"))
    docs = [_doc("a01", "Rapor 1", f"/lightning/r/ContentDocument/{DOCUMENT_2}/view")]

    with pytest.raises(RecordStoreError):
        await resolve_documents(store, docs, [], SCOPE)


@pytest.mark.asyncio
async def test_photo_uses_latest_version_from_page():
    store = FakeRecordStore()
    links = [_link(DOCUMENT_2, "Rapor 1", VERSION_2), _link(DOCUMENT_1, "Pas Foto 3x4_PMB", VERSION_1)]

    result = await resolve_documents(store, [], links, SCOPE)

    assert result.photo_version_id == VERSION_1
    assert store.queries == []


@pytest.mark.asyncio
async def test_photo_without_published_version_queries_content_version():
    store = FakeRecordStore()
    store.on(
        "FROM ContentVersion",
        "IsLatest = true",
        rows=[{"Id": VERSION_3, "ContentDocumentId": DOCUMENT_2, "IsLatest": True}],
    )
    links = [_link(DOCUMENT_1, "Pas Foto", None), _link(DOCUMENT_2, "Rapor 1", VERSION_2)]

    result = await resolve_documents(store, [], links, SCOPE)

    assert result.photo_version_id == VERSION_3
    (query,) = store.queries_matching("FROM ContentVersion")
    assert f"ContentDocumentId IN ('{DOCUMENT_1}','{DOCUMENT_2}')" in query
    assert "ORDER BY Id DESC LIMIT 1" in query


@pytest.mark.asyncio
async def test_no_files_means_no_photo():
    result = await resolve_documents(FakeRecordStore(), [_doc("a01", "Rapor 1")], [], SCOPE)
    assert result.photo_version_id is None
    assert result.versions == {"a01": None}
