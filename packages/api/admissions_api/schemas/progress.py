# This project was developed with assistance from AI tools.
"""Progress request/response schemas.

Fields are snake_case in Python and camelCase on the wire.
"""

from typing import Annotated, Literal

from pydantic import Field

from . import CamelModel


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


class ProgressRecord(CamelModel):
    """An Opportunity: one applicant's admissions pipeline instance."""

    id: str
    name: str = ""
    stage_name: str | None = None
    account_id: str | None = None


class StudentInfo(CamelModel):
    """The applicant's person account."""

    id: str
    name: str = ""
    person_email: str | None = None
    person_birthdate: str | None = None
    is_person_account: bool = False
    person_contact_id: str | None = None
    phone: str | None = None
    school_id: str | None = None
    school_name: str | None = None


class ParentRelationship(CamelModel):
    """A parent/guardian relationship. ``relationship_id`` is None until persisted."""

    relationship_id: str | None = None
    type: str = ""
    contact_id: str | None = None
    name: str = ""
    job: str = ""
    phone: str = ""
    email: str = ""
    address: str = ""


class DocumentItem(CamelModel):
    """A logical document slot and the content version it resolves to."""

    id: str
    name: str = ""
    document_type: str | None = None
    link: str | None = None
    verified: bool = False
    resolved_version_id: str | None = None


class PaymentInfo(CamelModel):
    id: str
    name: str = ""
    amount: float | None = None
    status: str | None = None
    virtual_account_number: str | None = None
    channel_bank_name: str | None = None
    payment_for: str | None = None


class ProgressDetail(CamelModel):
    progress: ProgressRecord
    student: StudentInfo | None = None
    parents: list[ParentRelationship] = Field(default_factory=list)
    documents: list[DocumentItem] = Field(default_factory=list)
    photo_version_id: str | None = None
    payments: list[PaymentInfo] = Field(default_factory=list)


class ProgressDetailResponse(CamelModel):
    ok: Literal[True] = True
    data: ProgressDetail


class ProgressSummary(CamelModel):
    """Dashboard card for one Opportunity."""

    id: str
    name: str = ""
    stage_name: str | None = None
    web_stage: str | None = None
    is_active: bool = False
    created_date: str | None = None
    close_date: str | None = None
    amount: float | None = None
    account_id: str | None = None
    campus_id: str | None = None
    campus_name: str | None = None
    study_program_id: str | None = None
    study_program_name: str | None = None
    test_schedule: str | None = None


class ProgressListResponse(CamelModel):
    ok: Literal[True] = True
    applicant_name: str = ""
    items: list[ProgressSummary] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# PATCH segments
# ---------------------------------------------------------------------------


class StudentFields(CamelModel):
    """Editable student fields. Anything else submitted is ignored."""

    person_birthdate: str | None = None
    phone: str | None = None


class DocumentPatchItem(CamelModel):
    id: str | None = None
    name: str = ""
    type: str | None = None
    link: str | None = None


class StudentPatch(CamelModel):
    segment: Literal["student"]
    student: StudentFields


class ParentsPatch(CamelModel):
    segment: Literal["parents"]
    parents: list[ParentRelationship]


class DocumentsPatch(CamelModel):
    segment: Literal["documents"]
    documents: list[DocumentPatchItem]


class ActivatePatch(CamelModel):
    segment: Literal["activate"]


ProgressPatch = Annotated[
    StudentPatch | ParentsPatch | DocumentsPatch | ActivatePatch,
    Field(discriminator="segment"),
]


class ActivatedProgress(CamelModel):
    id: str
    stage_name: str | None = None
    web_stage: str | None = None
    is_active: bool = False


class PatchResponse(CamelModel):
    ok: Literal[True] = True
    progress: ActivatedProgress | None = None
