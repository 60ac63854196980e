# This project was developed with assistance from AI tools.
"""ContentVersion binary proxy.

Streams file bytes and thumbnails from Salesforce Files through the shared
record store session, so the browser never needs a Salesforce token.

Every request names the progress it is viewing. A version is served only
when the caller may access that progress and the version's ContentDocument
is linked to the progress, its student account, a role contact, or one of
the progress's document slots.
"""

import logging
from dataclasses import dataclass

from .access import authorize, file_scope
from .progress import DOCUMENT_OBJECT
from .resolver import VERSION_KEY_PREFIX, extract_identifier
from .salesforce import SalesforceClient, record_key, soql_in, soql_quote

logger = logging.getLogger(__name__)


class InvalidVersionId(Exception):
    """Raised when the requested id is not a ContentVersion id."""


class VersionNotFound(Exception):
    """Raised when no ContentVersion has the requested id."""


class FileAccessDenied(Exception):
    """Raised when the version is not linked to the progress being viewed."""


@dataclass(frozen=True)
class FileContent:
    content: bytes
    content_type: str


def _check_version_id(version_id: str) -> str:
    identifier = extract_identifier(version_id)
    if identifier is None or identifier.kind != "version" or identifier.value != version_id:
        raise InvalidVersionId(f"Not a {VERSION_KEY_PREFIX} ContentVersion id: {version_id!r}")
    return version_id


async def authorize_version(store: SalesforceClient, caller_email: str, progress_id: str, version_id: str) -> str:
    """Return the checked version id once the caller may read it through ``progress_id``.

    Raises InvalidVersionId before any call, then ProgressNotFound /
    ProgressAccessDenied, VersionNotFound or FileAccessDenied.
    """
    vid = _check_version_id(version_id)
    grant = await authorize(store, caller_email, progress_id)

    versions = await store.query(
        f"SELECT Id, ContentDocumentId FROM ContentVersion WHERE Id={soql_quote(vid)} LIMIT 1"
    )
    if not versions:
        raise VersionNotFound(vid)
    document_id = versions[0]["ContentDocumentId"]

    links = await store.query(
        f"SELECT LinkedEntityId FROM ContentDocumentLink WHERE ContentDocumentId={soql_quote(document_id)}"
    )
    linked = list(dict.fromkeys(row["LinkedEntityId"] for row in links if row.get("LinkedEntityId")))
    scope = {record_key(i) for i in file_scope(grant)}
    if any(record_key(i) in scope for i in linked):
        return vid

    if linked:
        slots = await store.query(
            f"""
            SELECT Id FROM {DOCUMENT_OBJECT}
            WHERE Application_Progress__c={soql_quote(grant.progress["Id"])}
              AND Id IN {soql_in(linked)}
            """
        )
        if slots:
            return vid

    logger.warning("Version %s is not linked to progress %s", vid, grant.progress["Id"])
    raise FileAccessDenied(vid)


async def get_version_data(
    store: SalesforceClient, caller_email: str, progress_id: str, version_id: str
) -> FileContent:
    """Raw bytes of one ContentVersion."""
    vid = await authorize_version(store, caller_email, progress_id, version_id)
    content, content_type = await store.fetch_binary(f"/sobjects/ContentVersion/{vid}/VersionData")
    return FileContent(content=content, content_type=content_type)


async def get_version_thumbnail(
    store: SalesforceClient,
    caller_email: str,
    progress_id: str,
    version_id: str,
    width: int = 256,
    scale: int = 1,
) -> FileContent:
    """Rendered thumbnail of one ContentVersion."""
    vid = await authorize_version(store, caller_email, progress_id, version_id)
    content, content_type = await store.fetch_binary(
        f"/sobjects/ContentVersion/{vid}/thumbnail",
        params={"width": str(width), "scale": str(scale)},
    )
    if content_type == "application/octet-stream":
        content_type = "image/jpeg"
    return FileContent(content=content, content_type=content_type)
