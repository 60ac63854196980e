# This project was developed with assistance from AI tools.
"""Document identity resolution.

Every ``Account_Document__c`` row is a logical document slot whose free-text
``Document_Link__c`` may or may not name the uploaded binary. The binary
itself lives in Salesforce Files (ContentDocument -> ContentVersion) and is
reachable only through ContentDocumentLink rows hanging off records the
caller is allowed to see. This module decides, per document slot, which
ContentVersion the UI should open.

Resolution order, first match wins:

1. The link embeds a ContentVersion id (key prefix ``068``): used verbatim.
2. The link embeds a ContentDocument id (key prefix ``069``) whose latest
   version is known, from the file-link page or from one batch lookup.
3. The document's normalised name, or else its type, equals a normalised
   file title.
4. Nothing matched: the slot resolves to ``None``.

URL parsing is a heuristic. A link that carries no recognisable id is
logged and falls through to title matching instead of failing the request.
"""

import logging
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Literal

from .salesforce import SalesforceClient, record_key, soql_in

logger = logging.getLogger(__name__)

VERSION_KEY_PREFIX = "068"
DOCUMENT_KEY_PREFIX = "069"

PHOTO_TITLE_MARKER = "pas foto"


def _id_pattern(prefix: str) -> re.Pattern[str]:
    # Salesforce ids are 15 (case-sensitive) or 18 (case-safe) characters
    return re.compile(rf"(?<![A-Za-z0-9])({prefix}(?:[A-Za-z0-9]{{15}}|[A-Za-z0-9]{{12}}))(?![A-Za-z0-9])")


_VERSION_ID = _id_pattern(VERSION_KEY_PREFIX)
_DOCUMENT_ID = _id_pattern(DOCUMENT_KEY_PREFIX)
_NON_ALNUM = re.compile(r"[^a-z0-9]")


@dataclass(frozen=True)
class LinkIdentifier:
    kind: Literal["version", "document"]
    value: str


@dataclass(frozen=True)
class FileLink:
    """One ContentDocumentLink row with its document's title and latest version."""

    content_document_id: str
    linked_entity_id: str
    title: str = ""
    latest_version_id: str | None = None

    @classmethod
    def from_row(cls, row: dict) -> "FileLink":
        document = row.get("ContentDocument") or {}
        return cls(
            content_document_id=row["ContentDocumentId"],
            linked_entity_id=row.get("LinkedEntityId", ""),
            title=document.get("Title") or "",
            latest_version_id=document.get("LatestPublishedVersionId") or None,
        )


@dataclass
class FileIndex:
    """Lookup tables over a page of file links. The first entry seen for a key wins.

    ``by_document`` is keyed on the 15-character id so links carrying either
    id length find the same entry.
    """

    by_document: dict[str, str] = field(default_factory=dict)
    by_title: dict[str, str] = field(default_factory=dict)

    @classmethod
    def build(cls, links: Iterable[FileLink]) -> "FileIndex":
        index = cls()
        for link in links:
            if not link.latest_version_id:
                continue
            index.add_document(link.content_document_id, link.latest_version_id)
            title = normalize_title(link.title)
            if title:
                index.by_title.setdefault(title, link.latest_version_id)
        return index

    def add_document(self, document_id: str, version_id: str) -> None:
        self.by_document.setdefault(record_key(document_id), version_id)

    def version_of(self, document_id: str) -> str | None:
        return self.by_document.get(record_key(document_id))


@dataclass
class Resolution:
    versions: dict[str, str | None]
    photo_version_id: str | None = None


def normalize_title(value: str | None) -> str:
    """Lower-case and drop every non-alphanumeric character."""
    return _NON_ALNUM.sub("", (value or "").lower())


def extract_identifier(link: str | None) -> LinkIdentifier | None:
    """Pull a ContentVersion or ContentDocument id out of a free-text link.

    A version id is preferred when both shapes appear.
    """
    if not link:
        return None
    match = _VERSION_ID.search(link)
    if match:
        return LinkIdentifier("version", match.group(1))
    match = _DOCUMENT_ID.search(link)
    if match:
        return LinkIdentifier("document", match.group(1))
    return None


def select_photo(links: Sequence[FileLink]) -> FileLink | None:
    """First file titled like a passport photo, else the first file."""
    for link in links:
        if PHOTO_TITLE_MARKER in link.title.lower():
            return link
    return links[0] if links else None


# ---------------------------------------------------------------------------
# Record store access
# ---------------------------------------------------------------------------


async def fetch_file_links(
    store: SalesforceClient,
    entity_ids: Sequence[str],
    limit: int = 50,
) -> list[FileLink]:
    """Most recently modified file links attached to any of ``entity_ids``."""
    if not entity_ids:
        return []
    rows = await store.query(
        f"""
        SELECT ContentDocumentId, LinkedEntityId,
               ContentDocument.Title, ContentDocument.LatestPublishedVersionId
        FROM ContentDocumentLink
        WHERE LinkedEntityId IN {soql_in(entity_ids)}
        ORDER BY SystemModstamp DESC
        LIMIT {int(limit)}
        """
    )
    return [FileLink.from_row(r) for r in rows]


async def _lookup_linked_versions(
    store: SalesforceClient,
    document_ids: Sequence[str],
    scope_ids: Sequence[str],
) -> list[FileLink]:
    """Latest versions for ``document_ids``, limited to files linked inside ``scope_ids``."""
    rows = await store.query(
        f"""
        SELECT ContentDocumentId, LinkedEntityId,
               ContentDocument.Title, ContentDocument.LatestPublishedVersionId
        FROM ContentDocumentLink
        WHERE ContentDocumentId IN {soql_in(document_ids)}
          AND LinkedEntityId IN {soql_in(scope_ids)}
        """
    )
    return [FileLink.from_row(r) for r in rows]


async def _latest_version_of_any(store: SalesforceClient, document_ids: Sequence[str]) -> str | None:
    rows = await store.query(
        f"""
        SELECT Id, ContentDocumentId, IsLatest
        FROM ContentVersion
        WHERE ContentDocumentId IN {soql_in(document_ids)}
          AND IsLatest = true
        ORDER BY Id DESC
        LIMIT 1
        """
    )
    return rows[0]["Id"] if rows else None


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


def _match_title(index: FileIndex, doc: dict) -> str | None:
    for value in (doc.get("Name"), doc.get("Document_Type__c")):
        title = normalize_title(value)
        if title and title in index.by_title:
            return index.by_title[title]
    return None


async def resolve_documents(
    store: SalesforceClient,
    documents: Sequence[dict],
    file_links: Sequence[FileLink],
    scope_ids: Sequence[str],
) -> Resolution:
    """Map every document row id to its best-known ContentVersion id.

    ``scope_ids`` are the linked entities the caller may read files from
    (progress, account, candidate contacts). The document rows themselves
    are added to that scope for the batch lookup, since uploads also link
    files to their document slot.

    Makes at most two extra queries regardless of document count: one batch
    lookup for ContentDocument ids missing from ``file_links``, and one
    photo fallback when the chosen photo has no published version.
    """
    index = FileIndex.build(file_links)

    identifiers: dict[str, LinkIdentifier | None] = {}
    for doc in documents:
        link = doc.get("Document_Link__c")
        identifier = extract_identifier(link)
        if identifier is None and link and link.strip():
            logger.warning(
                "Document %s link carries no file id, falling back to title match: %r",
                doc["Id"],
                link,
            )
        identifiers[doc["Id"]] = identifier

    missing = sorted(
        {
            ident.value
            for ident in identifiers.values()
            if ident is not None and ident.kind == "document" and index.version_of(ident.value) is None
        }
    )
    if missing:
        lookup_scope = list(dict.fromkeys([*scope_ids, *(d["Id"] for d in documents)]))
        for link in await _lookup_linked_versions(store, missing, lookup_scope):
            if link.latest_version_id:
                index.add_document(link.content_document_id, link.latest_version_id)

    versions: dict[str, str | None] = {}
    for doc in documents:
        ident = identifiers[doc["Id"]]
        version: str | None = None
        if ident is not None and ident.kind == "version":
            version = ident.value
        elif ident is not None and ident.kind == "document":
            version = index.version_of(ident.value)
        if version is None:
            version = _match_title(index, doc)
        versions[doc["Id"]] = version

    photo = select_photo(file_links)
    photo_version_id = photo.latest_version_id if photo else None
    if photo is not None and not photo_version_id:
        candidate_ids = list(dict.fromkeys(link.content_document_id for link in file_links))
        photo_version_id = await _latest_version_of_any(store, candidate_ids)

    return Resolution(versions=versions, photo_version_id=photo_version_id)
