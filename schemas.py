"""
API and form schemas for the pipeline CRM.

Field names are snake_case in Python and camelCase on the wire, matching the
account document shape the browser client works with.
"""

from datetime import datetime
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from stages import BUSINESS_INTEL


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Note(CamelModel):
    text: str
    timestamp: str
    sentiment: Optional[str] = None


class AccountResponse(CamelModel):
    """One account document as delivered in a snapshot."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: str
    company_name: str = ""
    services_needed: str = ""
    industry: str = ""
    website: str = ""
    company_size: str = ""
    lead_source: str = ""
    contact_name: str = ""
    contact_title: str = ""
    contact_email: str = ""
    contact_phone: str = ""
    stage: str
    value: float = 0
    monthly_value: float = 0
    deal_score: int = 50
    expected_close_date: Optional[datetime] = None
    next_follow_up_date: Optional[datetime] = None
    notes: List[Note] = Field(default_factory=list)
    lost_reason: str = ""
    created_at: Optional[datetime] = None


def _date_input(value: Optional[datetime]) -> str:
    return value.date().isoformat() if value else ""


class AccountForm(CamelModel):
    """Editable form state.

    Numeric and date fields hold what the user typed; they are normalized
    only when the form is saved.
    """

    company_name: str = ""
    services_needed: str = ""
    value: Union[float, str] = ""
    monthly_value: Union[float, str] = ""
    expected_close_date: str = ""
    next_follow_up_date: str = ""
    contact_name: str = ""
    contact_title: str = ""
    contact_email: str = ""
    contact_phone: str = ""
    industry: str = ""
    website: str = ""
    company_size: str = ""
    lead_source: str = ""
    stage: str = BUSINESS_INTEL
    notes: List[Note] = Field(default_factory=list)
    lost_reason: str = ""
    deal_score: int = 50

    @classmethod
    def from_account(cls, account: AccountResponse) -> "AccountForm":
        return cls(
            company_name=account.company_name or "",
            services_needed=account.services_needed or "",
            value=account.value or "",
            monthly_value=account.monthly_value or "",
            expected_close_date=_date_input(account.expected_close_date),
            next_follow_up_date=_date_input(account.next_follow_up_date),
            contact_name=account.contact_name or "",
            contact_title=account.contact_title or "",
            contact_email=account.contact_email or "",
            contact_phone=account.contact_phone or "",
            industry=account.industry or "",
            website=account.website or "",
            company_size=account.company_size or "",
            lead_source=account.lead_source or "",
            stage=account.stage or BUSINESS_INTEL,
            notes=list(account.notes),
            lost_reason=account.lost_reason or "",
            deal_score=account.deal_score or 50,
        )


class AccountFormPatch(CamelModel):
    """Partial form edit; only the fields sent are applied."""

    company_name: Optional[str] = None
    services_needed: Optional[str] = None
    value: Optional[Union[float, str]] = None
    monthly_value: Optional[Union[float, str]] = None
    expected_close_date: Optional[str] = None
    next_follow_up_date: Optional[str] = None
    contact_name: Optional[str] = None
    contact_title: Optional[str] = None
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    industry: Optional[str] = None
    website: Optional[str] = None
    company_size: Optional[str] = None
    lead_source: Optional[str] = None
    stage: Optional[str] = None
    lost_reason: Optional[str] = None


# ----- Auth -----
class SignInRequest(CamelModel):
    email: str
    password: str


class SignUpRequest(CamelModel):
    first_name: str
    last_name: str
    email: str
    password: str
    confirm_password: str


class AuthResponse(CamelModel):
    token: str
    user_id: str
    email: str
    display_name: Optional[str] = None


class SessionResponse(CamelModel):
    state: str
    user_id: Optional[str] = None
    email: Optional[str] = None
    display_name: Optional[str] = None


# ----- Board -----
class StageMoveRequest(CamelModel):
    stage: str


class StageBar(CamelModel):
    stage: str
    value: float
    height_percent: float


class PipelineMetricsResponse(CamelModel):
    total_pipeline_value: float
    active_deals: int
    upcoming_follow_ups: int
    stage_chart: List[StageBar]


class BoardResponse(CamelModel):
    stages: List[str]
    columns: Dict[str, List[AccountResponse]]
    metrics: PipelineMetricsResponse
    error: Optional[str] = None


# ----- Editor -----
class OpenEditorRequest(CamelModel):
    account_id: Optional[str] = None


class NoteCreate(CamelModel):
    text: Optional[str] = None
    sentiment: Optional[str] = None


class NoteEdit(CamelModel):
    text: str


class RecognitionResult(CamelModel):
    transcript: str
    is_final: bool = False


class RecognitionEvent(CamelModel):
    result_index: int = 0
    results: List[RecognitionResult]


class RecognitionError(CamelModel):
    error: str


class DictationState(CamelModel):
    target: str
    state: str
    live_transcript: str = ""


class EditorResponse(CamelModel):
    account_id: Optional[str] = None
    is_open: bool
    form: AccountForm
    new_note: str = ""
    new_note_sentiment: Optional[str] = None
    email_draft: str = ""
    agenda: str = ""
    agenda_html: str = ""
    status: str = ""
    error: Optional[str] = None
    loading_ai: bool = False
    saving: bool = False
    show_delete_confirm: bool = False
    dictation: List[DictationState] = Field(default_factory=list)


class ImportResponse(CamelModel):
    message: str
    accounts_added: int
