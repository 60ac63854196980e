# This project was developed with assistance from AI tools.
"""Progress aggregation and segmented updates.

``get_progress_detail`` authorizes the caller, fetches the sibling record
sets concurrently, resolves document versions and composes the detail
payload. ``apply_patch`` writes exactly one segment (student, parents,
documents or activate) and leaves the others untouched.
"""

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable

from ..core.config import settings
from ..schemas.progress import (
    ActivatedProgress,
    ActivatePatch,
    DocumentItem,
    DocumentsPatch,
    ParentRelationship,
    ParentsPatch,
    PaymentInfo,
    ProgressDetail,
    ProgressListResponse,
    ProgressRecord,
    ProgressSummary,
    StudentInfo,
    StudentPatch,
)
from .access import AccessGrant, ProgressNotFound, authorize, file_scope
from .resolver import fetch_file_links, resolve_documents
from .salesforce import SalesforceClient, raise_for_failures, record_key, soql_in, soql_quote

logger = logging.getLogger(__name__)

RELATIONSHIP_TYPES = ("Father", "Mother", "Daughter", "Son", "Sister", "Brother")
SINGLETON_RELATIONSHIP_TYPES = frozenset({"Father", "Mother"})

DOCUMENT_OBJECT = "Account_Document__c"


class InvalidPayload(Exception):
    """Raised when a PATCH segment body is structurally valid but semantically rejected."""

    def __init__(self, code: str, message: str = ""):
        super().__init__(message or code)
        self.code = code


# ---------------------------------------------------------------------------
# Row mapping
# ---------------------------------------------------------------------------


def _progress_from_row(row: dict) -> ProgressRecord:
    return ProgressRecord(
        id=row["Id"],
        name=row.get("Name") or "",
        stage_name=row.get("StageName"),
        account_id=row.get("AccountId"),
    )


def _student_from_row(row: dict) -> StudentInfo:
    school = row.get("Master_School__r") or {}
    return StudentInfo(
        id=row["Id"],
        name=row.get("Name") or "",
        person_email=row.get("PersonEmail"),
        person_birthdate=row.get("PersonBirthdate"),
        is_person_account=bool(row.get("IsPersonAccount")),
        person_contact_id=row.get("PersonContactId"),
        phone=row.get("Phone"),
        school_id=row.get("Master_School__c"),
        school_name=school.get("Name"),
    )


def _parent_from_row(row: dict) -> ParentRelationship:
    contact = row.get("Contact__r") or {}
    return ParentRelationship(
        relationship_id=row["Id"],
        type=row.get("Type__c") or "",
        contact_id=row.get("Contact__c"),
        name=contact.get("Name") or "",
        job=contact.get("Job__c") or "",
        phone=contact.get("Phone") or "",
        email=contact.get("Email") or "",
        address=contact.get("Address__c") or "",
    )


def _payment_from_row(row: dict) -> PaymentInfo:
    return PaymentInfo(
        id=row["Id"],
        name=row.get("Name") or "",
        amount=row.get("Amount__c"),
        status=row.get("Status__c"),
        virtual_account_number=row.get("Virtual_Account_Number__c"),
        channel_bank_name=row.get("Channel_Bank_Name__c"),
        payment_for=row.get("Payment_For__c"),
    )


def _summary_from_row(row: dict) -> ProgressSummary:
    campus = row.get("Campus__r") or {}
    program = row.get("Study_Program__r") or {}
    return ProgressSummary(
        id=row["Id"],
        name=row.get("Name") or "",
        stage_name=row.get("StageName"),
        web_stage=row.get("Web_Stage__c"),
        is_active=bool(row.get("Is_Active__c")),
        created_date=row.get("CreatedDate"),
        close_date=row.get("CloseDate"),
        amount=row.get("Amount"),
        account_id=row.get("AccountId"),
        campus_id=row.get("Campus__c"),
        campus_name=campus.get("Name"),
        study_program_id=row.get("Study_Program__c"),
        study_program_name=program.get("Name"),
        test_schedule=row.get("Test_Schedule__c"),
    )


# ---------------------------------------------------------------------------
# Detail
# ---------------------------------------------------------------------------


async def _fetch_documents(store: SalesforceClient, progress_id: str) -> list[dict]:
    return await store.query(
        f"""
        SELECT Id, Name, Document_Type__c, Document_Link__c, Verified__c
        FROM {DOCUMENT_OBJECT}
        WHERE Application_Progress__c={soql_quote(progress_id)}
        ORDER BY CreatedDate DESC
        """
    )


async def _fetch_parents(store: SalesforceClient, account_id: str | None) -> list[dict]:
    if not account_id:
        return []
    return await store.query(
        f"""
        SELECT Id, Type__c, Contact__c,
               Contact__r.Name, Contact__r.Job__c, Contact__r.Phone,
               Contact__r.Email, Contact__r.Address__c
        FROM Relationship__c
        WHERE Related_Contact__r.AccountId = {soql_quote(account_id)}
        ORDER BY CreatedDate ASC
        """
    )


async def _fetch_payments(store: SalesforceClient, progress_id: str) -> list[dict]:
    return await store.query(
        f"""
        SELECT Id, Name, Amount__c, Status__c, Virtual_Account_Number__c,
               Channel_Bank_Name__c, Payment_For__c
        FROM Payment__c
        WHERE Application_Progress__c={soql_quote(progress_id)}
        ORDER BY CreatedDate DESC
        """
    )


async def get_progress_detail(store: SalesforceClient, caller_email: str, progress_id: str) -> ProgressDetail:
    """Assemble progress, student, parents, documents with resolved versions, photo and payments.

    Raises ProgressNotFound / ProgressAccessDenied before any sibling fetch.
    """
    grant = await authorize(store, caller_email, progress_id)
    progress_key = grant.progress["Id"]
    scope = file_scope(grant)

    try:
        async with asyncio.TaskGroup() as tg:
            documents_task = tg.create_task(_fetch_documents(store, progress_key))
            links_task = tg.create_task(fetch_file_links(store, scope, limit=settings.FILE_LINK_PAGE_SIZE))
            parents_task = tg.create_task(_fetch_parents(store, grant.progress.get("AccountId")))
            payments_task = tg.create_task(_fetch_payments(store, progress_key))
    except ExceptionGroup as group:
        # siblings are already cancelled; surface the first failure as-is
        raise group.exceptions[0] from None

    documents = documents_task.result()
    file_links = links_task.result()
    parents = parents_task.result()
    payments = payments_task.result()

    resolution = await resolve_documents(store, documents, file_links, scope)

    logger.info(
        "Progress %s: %d documents (%d resolved), %d files scanned",
        progress_key,
        len(documents),
        sum(1 for v in resolution.versions.values() if v),
        len(file_links),
    )

    return ProgressDetail(
        progress=_progress_from_row(grant.progress),
        student=_student_from_row(grant.account) if grant.account else None,
        parents=[_parent_from_row(r) for r in parents],
        documents=[
            DocumentItem(
                id=d["Id"],
                name=d.get("Name") or "",
                document_type=d.get("Document_Type__c"),
                link=d.get("Document_Link__c"),
                verified=bool(d.get("Verified__c")),
                resolved_version_id=resolution.versions.get(d["Id"]),
            )
            for d in documents
        ],
        photo_version_id=resolution.photo_version_id,
        payments=[_payment_from_row(r) for r in payments],
    )


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------


async def find_applicant_account(store: SalesforceClient, caller_email: str) -> dict | None:
    """Person account owning ``caller_email``, directly or through a Contact."""
    email = soql_quote(caller_email)
    rows = await store.query(
        f"""
        SELECT Id, Name, IsPersonAccount, PersonEmail
        FROM Account
        WHERE IsPersonAccount = true AND PersonEmail = {email}
        LIMIT 1
        """
    )
    if not rows:
        rows = await store.query(
            f"""
            SELECT Id, Name, IsPersonAccount, PersonEmail
            FROM Account
            WHERE IsPersonAccount = true
              AND Id IN (SELECT AccountId FROM Contact WHERE Email = {email})
            LIMIT 1
            """
        )
    return rows[0] if rows else None


async def list_progress(store: SalesforceClient, caller_email: str) -> ProgressListResponse:
    """All Opportunities of the caller's person account, newest first."""
    account = await find_applicant_account(store, caller_email)
    if account is None:
        return ProgressListResponse(applicant_name="", items=[])

    rows = await store.query(
        f"""
        SELECT Id, Name, StageName, Web_Stage__c, Is_Active__c, CreatedDate, AccountId,
               CloseDate, Amount, Campus__c, Campus__r.Name,
               Study_Program__c, Study_Program__r.Name, Test_Schedule__c
        FROM Opportunity
        WHERE AccountId = {soql_quote(account["Id"])}
        ORDER BY CreatedDate DESC
        """
    )
    return ProgressListResponse(
        applicant_name=account.get("Name") or "",
        items=[_summary_from_row(r) for r in rows],
    )


# ---------------------------------------------------------------------------
# PATCH segments
# ---------------------------------------------------------------------------


_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_DMY_DATE = re.compile(r"^(\d{1,2})[/-](\d{1,2})[/-](\d{4})$")


def normalize_birthdate(value: str | None) -> str | None:
    """Return an ISO date for ``yyyy-mm-dd`` or ``dd/mm/yyyy`` input; other text passes through."""
    text = (value or "").strip()
    if not text:
        return None
    if _ISO_DATE.match(text):
        return text
    match = _DMY_DATE.match(text)
    if match:
        day, month, year = match.groups()
        return f"{year}-{month.zfill(2)}-{day.zfill(2)}"
    return text


def is_terminal_stage(stage_name: str | None) -> bool:
    stage = (stage_name or "").lower()
    return any(keyword.lower() in stage for keyword in settings.TERMINAL_STAGE_KEYWORDS)


async def patch_student(store: SalesforceClient, grant: AccessGrant, body: StudentPatch) -> None:
    account_id = grant.progress.get("AccountId")
    if not account_id:
        raise InvalidPayload("no_account_on_progress", "Progress has no student account")

    fields: dict = {"Id": account_id}
    birthdate = normalize_birthdate(body.student.person_birthdate)
    if birthdate:
        fields["PersonBirthdate"] = birthdate
    if body.student.phone is not None:
        fields["Phone"] = body.student.phone.strip()

    if len(fields) == 1:
        return
    raise_for_failures([await store.update("Account", fields)], "Account update")


def check_singleton_types(parents: list[ParentRelationship]) -> None:
    """Reject a parent set that repeats a singleton relationship type."""
    seen: set[str] = set()
    for parent in parents:
        rel_type = parent.type.strip()
        if rel_type not in SINGLETON_RELATIONSHIP_TYPES:
            continue
        if rel_type in seen:
            raise InvalidPayload(
                "duplicate_relationship_type",
                f"Relationship type {rel_type!r} may appear only once",
            )
        seen.add(rel_type)


async def _find_contact(store: SalesforceClient, email: str, phone: str) -> str | None:
    for field_name, value in (("Email", email), ("Phone", phone)):
        if not value:
            continue
        rows = await store.query(
            f"SELECT Id FROM Contact WHERE {field_name} = {soql_quote(value)} ORDER BY CreatedDate ASC LIMIT 1"
        )
        if rows:
            return rows[0]["Id"]
    return None


async def _upsert_parent_contact(store: SalesforceClient, parent: ParentRelationship) -> str:
    email = parent.email.strip()
    phone = parent.phone.strip()
    fields = {
        "LastName": parent.name.strip(),
        "Job__c": parent.job.strip() or None,
        "Phone": phone or None,
        "Email": email or None,
        "Address__c": parent.address.strip() or None,
    }

    contact_id = parent.contact_id or await _find_contact(store, email, phone)
    if contact_id:
        raise_for_failures([await store.update("Contact", {"Id": contact_id, **fields})], "Contact update")
        return contact_id

    result = await store.insert("Contact", fields)
    raise_for_failures([result], "Contact insert")
    return result.id


def check_persisted_singletons(persisted: list[dict], parents: list[ParentRelationship]) -> None:
    """Reject a submission that would leave two relationships of a singleton type.

    Submitted rows carrying a ``relationship_id`` replace the persisted row's
    type; rows without one are added.
    """
    final_types = {record_key(row["Id"]): (row.get("Type__c") or "").strip() for row in persisted}
    added: list[str] = []
    for parent in parents:
        rel_type = parent.type.strip()
        if not rel_type or not parent.name.strip():
            continue
        if parent.relationship_id:
            final_types[record_key(parent.relationship_id)] = rel_type
        else:
            added.append(rel_type)

    all_types = [*final_types.values(), *added]
    for rel_type in SINGLETON_RELATIONSHIP_TYPES:
        if all_types.count(rel_type) > 1:
            raise InvalidPayload(
                "duplicate_relationship_type",
                f"Relationship type {rel_type!r} already exists for this student",
            )


async def patch_parents(store: SalesforceClient, grant: AccessGrant, body: ParentsPatch) -> None:
    account_id = grant.progress.get("AccountId")
    if not account_id:
        raise InvalidPayload("no_account_on_progress", "Progress has no student account")
    student_contact_id = (grant.account or {}).get("PersonContactId")

    persisted = await _fetch_parents(store, account_id)
    check_persisted_singletons(persisted, body.parents)
    persisted_ids = {record_key(row["Id"]) for row in persisted}
    persisted_contacts = {record_key(row.get("Contact__c")) for row in persisted if row.get("Contact__c")}
    for parent in body.parents:
        if parent.relationship_id and record_key(parent.relationship_id) not in persisted_ids:
            raise InvalidPayload(
                "unknown_relationship", f"Relationship {parent.relationship_id} is not on this student"
            )
        if parent.contact_id and record_key(parent.contact_id) not in persisted_contacts:
            raise InvalidPayload("unknown_contact", f"Contact {parent.contact_id} is not a parent of this student")

    for parent in body.parents:
        rel_type = parent.type.strip()
        if not rel_type or not parent.name.strip():
            continue

        contact_id = await _upsert_parent_contact(store, parent)
        relationship = {"Type__c": rel_type, "Contact__c": contact_id}
        if student_contact_id:
            relationship["Related_Contact__c"] = student_contact_id

        if parent.relationship_id:
            result = await store.update("Relationship__c", {"Id": parent.relationship_id, **relationship})
        else:
            result = await store.insert("Relationship__c", relationship)
        raise_for_failures([result], "Relationship upsert")


async def patch_documents(store: SalesforceClient, grant: AccessGrant, body: DocumentsPatch) -> None:
    """Upsert document slots with one batched update and one batched insert.

    Submitted ids must belong to this progress; one query loads both those
    rows and the existing rows matched by type. Any foreign id rejects the
    whole segment before a write.
    """
    progress_id = grant.progress["Id"]
    items = [d for d in body.documents if (d.type or "").strip()]
    if not items:
        return

    ids = sorted({d.id for d in items if d.id})
    types = sorted({d.type.strip() for d in items if not d.id})
    filters = []
    if ids:
        filters.append(f"Id IN {soql_in(ids)}")
    if types:
        filters.append(f"Document_Type__c IN {soql_in(types)}")
    rows = await store.query(
        f"""
        SELECT Id, Document_Type__c
        FROM {DOCUMENT_OBJECT}
        WHERE Application_Progress__c={soql_quote(progress_id)}
          AND ({" OR ".join(filters)})
        """
    )

    owned = {record_key(row["Id"]) for row in rows}
    foreign = [i for i in ids if record_key(i) not in owned]
    if foreign:
        logger.warning("Progress %s: rejected document ids not on this progress: %s", progress_id, foreign)
        raise InvalidPayload("unknown_document", f"Documents not on this progress: {', '.join(foreign)}")

    targeted = {record_key(i) for i in ids}
    existing_by_type: dict[str, str] = {}
    for row in rows:
        if row.get("Document_Type__c") and record_key(row["Id"]) not in targeted:
            existing_by_type.setdefault(row["Document_Type__c"], row["Id"])

    to_update: list[dict] = []
    to_insert: list[dict] = []
    for item in items:
        doc_type = item.type.strip()
        fields = {
            "Name": item.name.strip() or doc_type,
            "Application_Progress__c": progress_id,
            "Document_Type__c": doc_type,
            "Document_Link__c": (item.link or "").strip(),
        }
        record_id = item.id or existing_by_type.get(doc_type)
        if record_id:
            to_update.append({"Id": record_id, **fields})
        else:
            to_insert.append(fields)

    if to_update:
        raise_for_failures(await store.update_many(DOCUMENT_OBJECT, to_update), "Document update")
    if to_insert:
        raise_for_failures(await store.insert_many(DOCUMENT_OBJECT, to_insert), "Document insert")
    logger.info("Progress %s: %d documents updated, %d inserted", progress_id, len(to_update), len(to_insert))


def _activated_from_record(record: dict) -> ActivatedProgress:
    return ActivatedProgress(
        id=record["Id"],
        stage_name=record.get("StageName"),
        web_stage=record.get("Web_Stage__c"),
        is_active=bool(record.get("Is_Active__c")),
    )


async def activate_progress(store: SalesforceClient, grant: AccessGrant, body: ActivatePatch) -> ActivatedProgress:
    """Set ``Is_Active__c`` unless the stage is terminal; return the current record."""
    progress_id = grant.progress["Id"]
    current = await store.retrieve("Opportunity", progress_id)
    if current is None:
        raise ProgressNotFound(progress_id)

    if is_terminal_stage(current.get("StageName")):
        logger.info("Progress %s not activated: terminal stage %r", progress_id, current.get("StageName"))
        return _activated_from_record(current)

    if current.get("Is_Active__c"):
        return _activated_from_record(current)

    raise_for_failures(
        [await store.update("Opportunity", {"Id": progress_id, "Is_Active__c": True})],
        "Opportunity activation",
    )
    refreshed = await store.retrieve("Opportunity", progress_id)
    return _activated_from_record(refreshed or {**current, "Is_Active__c": True})


PatchHandler = Callable[[SalesforceClient, AccessGrant, object], Awaitable[ActivatedProgress | None]]

PATCH_HANDLERS: dict[str, PatchHandler] = {
    "student": patch_student,
    "parents": patch_parents,
    "documents": patch_documents,
    "activate": activate_progress,
}


def validate_patch(body: StudentPatch | ParentsPatch | DocumentsPatch | ActivatePatch) -> None:
    """Payload checks that need no record store access."""
    if isinstance(body, ParentsPatch):
        for parent in body.parents:
            rel_type = parent.type.strip()
            if rel_type and rel_type not in RELATIONSHIP_TYPES:
                raise InvalidPayload("unknown_relationship_type", f"Unknown relationship type {rel_type!r}")
        check_singleton_types(body.parents)


async def apply_patch(
    store: SalesforceClient,
    caller_email: str,
    progress_id: str,
    body: StudentPatch | ParentsPatch | DocumentsPatch | ActivatePatch,
) -> ActivatedProgress | None:
    """Validate, authorize, then write the one segment named by ``body.segment``.

    Invalid payloads are rejected before any Salesforce call.
    """
    validate_patch(body)
    grant = await authorize(store, caller_email, progress_id)
    handler = PATCH_HANDLERS[body.segment]
    return await handler(store, grant, body)
