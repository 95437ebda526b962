"""
Account editor: the form bound to one account (or to a new one).

Holds local form state, runs the AI helpers against it and writes back
through the board. Dictation for the account fields and for notes each get
their own session so one can never clobber the other.
"""

import base64
import json
import logging
from datetime import date, datetime
from typing import Dict, Optional

import markdown

from ai_client import MISSING_KEY_STATUS, GenerativeClient, parse_score, strip_code_fences
from board import BoardError, PipelineBoard
from dictation import ACCOUNT_TARGET, NOTES_TARGET, TARGETS, DictationSession, DictationStatus
from prompts import (
    CARD_FIELDS,
    PromptContext,
    build_account_dictation_request,
    build_agenda_request,
    build_card_scan_request,
    build_email_request,
    build_note_dictation_request,
    build_score_request,
)
from schemas import AccountForm, AccountResponse, Note
from stages import BUSINESS_INTEL, CLOSED_LOST, CLOSED_WON, is_stage

logger = logging.getLogger(__name__)

EMAIL_FALLBACK = "Failed to generate email draft. Please try again."
AGENDA_FALLBACK = "Failed to generate meeting agenda. Please try again."
NOTE_FALLBACK = "Failed to process note."
DEFAULT_SCORE = 50

SENTIMENT_EMOJI = {"Positive": "😊", "Negative": "😞"}

# camelCase reply keys -> form attributes
_FIELD_NAMES = {
    "companyName": "company_name",
    "servicesNeeded": "services_needed",
    "value": "value",
    "monthlyValue": "monthly_value",
    "contactName": "contact_name",
    "contactTitle": "contact_title",
    "contactEmail": "contact_email",
    "contactPhone": "contact_phone",
}


class AccountValidationError(Exception):
    """The form cannot be saved as it stands."""


def format_note(data: dict) -> str:
    """Render a structured call breakdown as a note body."""
    sentiment = data.get("sentiment") or "Neutral"
    text = f"**Sentiment:** {sentiment} {SENTIMENT_EMOJI.get(sentiment, '😐')}\n\n"
    sections = [
        ("Summary", data.get("summary") or []),
        ("Action Items", data.get("actions") or []),
        ("Customer Concerns", data.get("concerns") or []),
    ]
    for title, items in sections:
        if items:
            text += ("\n\n" if not text.endswith("\n\n") else "") + f"**{title}:**\n"
            text += "\n".join(f"• {item}" for item in items)
    return text


def validate_form(form: AccountForm):
    if not is_stage(form.stage):
        raise AccountValidationError(f"Unknown stage: {form.stage}")
    if form.stage == CLOSED_LOST and not form.lost_reason.strip():
        raise AccountValidationError("A lost reason is required for Closed Lost accounts.")
    for label, raw in (("expected close date", form.expected_close_date),
                       ("next follow-up date", form.next_follow_up_date)):
        if raw:
            try:
                if len(raw) != 10:
                    raise ValueError(raw)
                date.fromisoformat(raw)
            except ValueError:
                raise AccountValidationError(f"Invalid {label}: {raw}")


class AccountEditor:
    def __init__(self, board: PipelineBoard, ai: GenerativeClient,
                 account: Optional[AccountResponse] = None, locale: str = "en-US"):
        self.board = board
        self.ai = ai
        self.account = account
        self.form = AccountForm.from_account(account) if account else AccountForm()
        self.is_open = True
        self.error: Optional[str] = None
        self.status = ""
        self.loading_ai = False
        self.saving = False
        self.show_delete_confirm = False
        self.email_draft = ""
        self.agenda = ""
        self.agenda_html = ""
        self.new_note = ""
        self.new_note_sentiment: Optional[str] = None
        self.dictation: Dict[str, DictationSession] = {
            target: DictationSession(target, locale) for target in TARGETS
        }

    @property
    def account_id(self) -> Optional[str]:
        return self.account.id if self.account else None

    def update_form(self, **changes):
        self.form = self.form.model_copy(update=changes)

    def _generate(self, request, status):
        self.loading_ai = True
        self.status = status
        try:
            reply = self.ai.generate(request)
        finally:
            self.loading_ai = False
            self.status = ""
        if reply is None and not self.ai.enabled:
            self.status = MISSING_KEY_STATUS
        return reply

    # ----- scoring -----
    def recalculate_deal_score(self, form: AccountForm) -> int:
        if form.stage == CLOSED_WON:
            return 100
        if form.stage == CLOSED_LOST:
            return 0
        reply = self.ai.generate(build_score_request(PromptContext.from_form(form)))
        return parse_score(reply, DEFAULT_SCORE)

    # ----- save / delete -----
    def save(self) -> bool:
        """Validate, rescore and write the form. Closes the editor on success."""
        validate_form(self.form)
        form = self.form.model_copy()
        if form.stage == BUSINESS_INTEL and not form.services_needed:
            form.services_needed = "N/A"

        self.saving = True
        self.error = None
        try:
            if self.account is None:
                self.board.add_account(form)
            else:
                form.deal_score = self.recalculate_deal_score(form)
                self.board.update_account(self.account.id, form)
        except BoardError as e:
            self.error = str(e)
            return False
        finally:
            self.saving = False

        self.form = form
        self.is_open = False
        return True

    def request_delete(self):
        if self.account is None:
            raise AccountValidationError("Only saved accounts can be deleted.")
        self.show_delete_confirm = True

    def cancel_delete(self):
        self.show_delete_confirm = False

    def confirm_delete(self) -> bool:
        if not self.show_delete_confirm:
            raise AccountValidationError("Deletion must be confirmed first.")
        self.show_delete_confirm = False
        try:
            self.board.delete_account(self.account.id)
        except BoardError as e:
            self.error = str(e)
            return False
        self.is_open = False
        return True

    # ----- AI helpers -----
    def draft_email(self) -> str:
        draft = self._generate(build_email_request(PromptContext.from_form(self.form)), "Drafting email...")
        self.email_draft = draft or EMAIL_FALLBACK
        return self.email_draft

    def generate_agenda(self) -> str:
        agenda = self._generate(build_agenda_request(PromptContext.from_form(self.form)), "Generating agenda...")
        if agenda:
            self.agenda = agenda
            self.agenda_html = markdown.markdown(agenda)
        else:
            self.agenda = AGENDA_FALLBACK
            self.agenda_html = AGENDA_FALLBACK
        return self.agenda

    def scan_business_card(self, image: bytes, mime_type: str) -> bool:
        """Fill contact fields from a card photo. Unreadable replies change nothing."""
        if not image:
            return False
        encoded = base64.b64encode(image).decode("utf-8")
        reply = self._generate(build_card_scan_request(encoded, mime_type), "Scanning card...")
        if not reply:
            logger.error("AI extraction failed: No text in response.")
            return False
        parsed = self._parse_json(reply, "business card")
        if parsed is None:
            return False
        changes = {_FIELD_NAMES[key]: str(parsed.get(key) or "") for key in CARD_FIELDS}
        self.update_form(**changes)
        return True

    def _parse_json(self, reply: str, what: str) -> Optional[dict]:
        try:
            parsed = json.loads(strip_code_fences(reply))
        except json.JSONDecodeError as e:
            logger.error("Could not parse %s reply as JSON: %s", what, e)
            return None
        if not isinstance(parsed, dict):
            logger.error("Expected a JSON object for %s, got %s", what, type(parsed).__name__)
            return None
        return parsed

    # ----- dictation -----
    def start_dictation(self, target: str):
        return self.dictation[target].start()

    def dictation_result(self, target: str, results, result_index: int = 0) -> str:
        return self.dictation[target].on_result(results, result_index)

    def dictation_error(self, target: str, error: str):
        self.dictation[target].fail(error)
        self.status = ""
        if target == NOTES_TARGET:
            self.new_note = ""
            self.new_note_sentiment = None

    def stop_dictation(self, target: str):
        """Recognition ended: turn the transcript into form changes or a note candidate."""
        session = self.dictation[target]
        if session.state is not DictationStatus.LISTENING:
            return
        transcript = session.finish()
        if transcript is None:
            if target == NOTES_TARGET:
                self.new_note = ""
                self.new_note_sentiment = None
            return
        try:
            if target == ACCOUNT_TARGET:
                self._apply_account_dictation(transcript)
            else:
                self._apply_note_dictation(transcript)
        finally:
            session.complete()

    def _apply_account_dictation(self, transcript: str):
        reply = self._generate(build_account_dictation_request(transcript), "Thinking...")
        if not reply:
            logger.error("AI parsing failed: No text in response.")
            return
        parsed = self._parse_json(reply, "dictation")
        if parsed is None:
            return
        changes = {}
        for key, attr in _FIELD_NAMES.items():
            value = parsed.get(key)
            if value is None:
                continue
            changes[attr] = value if attr in ("value", "monthly_value") else str(value)
        self.update_form(**changes)

    def _apply_note_dictation(self, transcript: str):
        reply = self._generate(build_note_dictation_request(transcript), "Processing...")
        parsed = self._parse_json(reply, "note") if reply else None
        if parsed is None:
            self.new_note = NOTE_FALLBACK
            self.new_note_sentiment = None
            return
        self.new_note = format_note(parsed)
        self.new_note_sentiment = parsed.get("sentiment")

    # ----- notes -----
    def add_note(self, text: Optional[str] = None, sentiment: Optional[str] = None) -> bool:
        """Append a note and persist the notes list right away."""
        text = self.new_note if text is None else text
        if sentiment is None and text == self.new_note:
            sentiment = self.new_note_sentiment
        if not text.strip() or self.account is None:
            return False
        note = Note(text=text, timestamp=datetime.utcnow().isoformat() + "Z", sentiment=sentiment)
        notes = list(self.form.notes) + [note]
        try:
            self.board.save_notes(self.account.id, notes)
        except BoardError as e:
            self.error = str(e)
            return False
        self.update_form(notes=notes)
        self.new_note = ""
        self.new_note_sentiment = None
        return True

    def edit_note(self, index: int, text: str):
        notes = list(self.form.notes)
        notes[index] = notes[index].model_copy(update={"text": text})
        self.update_form(notes=notes)

    def close(self):
        self.is_open = False
