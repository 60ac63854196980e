# This project was developed with assistance from AI tools.
"""Progress access control.

Salesforce models applicant ownership three different ways, so a single
query cannot answer "may this caller see this Opportunity?". The strategies
run in order and stop at the first match:

1. Person account email equals the caller email.
2. The person account's PersonContact email equals the caller email.
3. The primary (or else earliest) OpportunityContactRole contact's email
   equals the caller email. Only that one contact is checked, even when
   other role contacts exist.

All role contact ids seen in step 3 are returned as
``candidate_contact_ids`` so the file search can cover them too.
"""

import logging
from dataclasses import dataclass, field

from ..core.auth import emails_match
from .salesforce import SalesforceClient, soql_quote

logger = logging.getLogger(__name__)


class ProgressNotFound(Exception):
    """Raised when the requested Opportunity does not exist."""


class ProgressAccessDenied(Exception):
    """Raised when the caller matches none of the ownership strategies."""


@dataclass
class AccessGrant:
    progress: dict
    account: dict | None = None
    candidate_contact_ids: list[str] = field(default_factory=list)


async def _fetch_one(store: SalesforceClient, soql: str) -> dict | None:
    rows = await store.query(soql)
    return rows[0] if rows else None


async def _contact_email(store: SalesforceClient, contact_id: str) -> str | None:
    contact = await _fetch_one(
        store,
        f"SELECT Id, Email FROM Contact WHERE Id={soql_quote(contact_id)} LIMIT 1",
    )
    return contact.get("Email") if contact else None


async def fetch_progress(store: SalesforceClient, progress_id: str) -> dict | None:
    return await _fetch_one(
        store,
        f"""
        SELECT Id, Name, StageName, AccountId
        FROM Opportunity
        WHERE Id={soql_quote(progress_id)}
        LIMIT 1
        """,
    )


async def fetch_account(store: SalesforceClient, account_id: str) -> dict | None:
    return await _fetch_one(
        store,
        f"""
        SELECT Id, Name, PersonEmail, PersonBirthdate, IsPersonAccount, PersonContactId,
               Phone, Master_School__c, Master_School__r.Name
        FROM Account
        WHERE Id={soql_quote(account_id)}
        LIMIT 1
        """,
    )


async def _matches_person_account(store: SalesforceClient, account: dict, caller_email: str) -> bool:
    if not account.get("IsPersonAccount"):
        return False
    if emails_match(account.get("PersonEmail"), caller_email):
        return True
    contact_id = account.get("PersonContactId")
    if contact_id:
        return emails_match(await _contact_email(store, contact_id), caller_email)
    return False


async def authorize(store: SalesforceClient, caller_email: str, progress_id: str) -> AccessGrant:
    """Return the progress, its account and role contacts if the caller may access it.

    Raises ProgressNotFound or ProgressAccessDenied.
    """
    progress = await fetch_progress(store, progress_id)
    if progress is None:
        raise ProgressNotFound(progress_id)

    grant = AccessGrant(progress=progress)
    allowed = False

    account_id = progress.get("AccountId")
    if account_id:
        grant.account = await fetch_account(store, account_id)
        if grant.account is not None:
            allowed = await _matches_person_account(store, grant.account, caller_email)

    if not allowed:
        roles = await store.query(
            f"""
            SELECT Id, IsPrimary, ContactId
            FROM OpportunityContactRole
            WHERE OpportunityId={soql_quote(progress["Id"])}
            ORDER BY IsPrimary DESC, CreatedDate ASC
            """
        )
        grant.candidate_contact_ids = [r["ContactId"] for r in roles if r.get("ContactId")]

        primary_or_first = next((r for r in roles if r.get("IsPrimary")), roles[0] if roles else None)
        if primary_or_first and primary_or_first.get("ContactId"):
            allowed = emails_match(
                await _contact_email(store, primary_or_first["ContactId"]),
                caller_email,
            )

    if not allowed:
        logger.warning("Access denied: %s attempted progress %s", caller_email, progress_id)
        raise ProgressAccessDenied(progress_id)

    return grant


def file_scope(grant: AccessGrant) -> list[str]:
    """Linked entities whose files the caller may see: progress, account, role contacts."""
    ids = [grant.progress["Id"]]
    if grant.progress.get("AccountId"):
        ids.append(grant.progress["AccountId"])
    ids.extend(grant.candidate_contact_ids)
    return list(dict.fromkeys(i for i in ids if i))
