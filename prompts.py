"""
Prompt builders for the generative model.

Each builder takes a structured context and returns a ``GenerationRequest``:
the prompt text plus optional inline binary data and an optional JSON schema
the reply must follow. Nothing here touches the network.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from stages import BUSINESS_INTEL


@dataclass
class GenerationRequest:
    prompt: str
    mime_type: str = "text/plain"
    inline_data: Optional[str] = None  # base64
    response_schema: Optional[Dict[str, Any]] = None

    def to_payload(self) -> Dict[str, Any]:
        """Plain-dict form of the request, as logged and as the client consumes it."""
        parts: List[Dict[str, Any]] = [{"text": self.prompt}]
        if self.inline_data:
            parts.append({"inline_data": {"mime_type": self.mime_type, "data": self.inline_data}})
        payload: Dict[str, Any] = {"parts": parts}
        if self.response_schema:
            payload["response_schema"] = self.response_schema
        return payload


@dataclass
class NoteEntry:
    text: str
    sentiment: Optional[str] = None


@dataclass
class PromptContext:
    """The slice of an account the prompts draw on."""

    company_name: str = ""
    services_needed: str = ""
    stage: str = BUSINESS_INTEL
    value: Any = ""
    monthly_value: Any = ""
    contact_name: str = ""
    notes: List[NoteEntry] = field(default_factory=list)

    @classmethod
    def from_form(cls, form) -> "PromptContext":
        return cls(
            company_name=form.company_name,
            services_needed=form.services_needed,
            stage=form.stage,
            value=form.value,
            monthly_value=form.monthly_value,
            contact_name=form.contact_name,
            notes=[NoteEntry(text=n.text, sentiment=n.sentiment) for n in form.notes],
        )

    def notes_summary(self, empty: str) -> str:
        if not self.notes:
            return empty
        return "\n".join(note.text for note in self.notes)


ACCOUNT_DICTATION_SCHEMA = {
    "type": "object",
    "properties": {
        "companyName": {"type": ["string", "null"]},
        "servicesNeeded": {"type": ["string", "null"]},
        "value": {"type": ["number", "null"]},
        "monthlyValue": {"type": ["number", "null"]},
        "contactName": {"type": ["string", "null"]},
        "contactTitle": {"type": ["string", "null"]},
        "contactEmail": {"type": ["string", "null"]},
        "contactPhone": {"type": ["string", "null"]},
    },
}

NOTE_DICTATION_SCHEMA = {
    "type": "object",
    "properties": {
        "summary": {"type": "array", "items": {"type": "string"}},
        "actions": {"type": "array", "items": {"type": "string"}},
        "concerns": {"type": "array", "items": {"type": "string"}},
        "sentiment": {"type": "string", "enum": ["Positive", "Negative", "Neutral"]},
    },
    "required": ["summary", "actions", "concerns", "sentiment"],
}

CARD_FIELDS = ["companyName", "contactName", "contactTitle", "contactEmail", "contactPhone"]


def build_score_request(ctx: PromptContext) -> GenerationRequest:
    history = [{"text": n.text, "sentiment": n.sentiment} for n in ctx.notes]
    prompt = f"""Based on the following account details, chronological notes, and its current position in the sales funnel, provide a predictive lead score from 0 to 100. A score of 100 indicates a very high probability of closing.

Consider these primary factors:
1. The deal's progression through the sales funnel. This is the most important indicator.
2. The combined sentiment of the notes, and the trend of that sentiment over time. Recent positive sentiment is more important than old negative sentiment.
3. The deal's value and other details including the setup fee and monthly subscription.

Account Details:
Current Stage: {ctx.stage}
Deal Value: ${ctx.value}
Monthly Value: ${ctx.monthly_value}
Company Name: {ctx.company_name}

Chronological History (Notes):
{json.dumps(history, indent=2)}

Return only the integer score as a number."""
    return GenerationRequest(prompt=prompt)


def build_email_request(ctx: PromptContext) -> GenerationRequest:
    notes = ctx.notes_summary(f"No notes available. The last interaction was for {ctx.stage}")
    prompt = f"""You are a professional sales representative. Draft a concise and personalized follow-up email for a client. The email should be polite, reference the previous interactions, and suggest a clear next step.

Account Details:
Company Name: {ctx.company_name}
Services Needed: {ctx.services_needed}
Current Stage: {ctx.stage}
Primary Contact: {ctx.contact_name}
Notes from previous interactions:
{notes}

Draft the email, starting with a subject line. Do not include a signature."""
    return GenerationRequest(prompt=prompt)


def build_agenda_request(ctx: PromptContext) -> GenerationRequest:
    notes = ctx.notes_summary("No notes available.")
    prompt = f"""You are a professional sales manager. Generate a concise and scannable meeting agenda for the next sales call. The agenda should be based on the account details and historical notes.

Format the response with markdown. Use a single heading, followed by bullet points for each section. Keep each section to a maximum of 3-4 bullet points.

## Meeting Agenda: {ctx.company_name} - {ctx.services_needed}

**Objective**
- [Briefly state the goal of the meeting based on the current stage.]

**Key Discussion Points**
- [Key topics pulled from notes or next steps in the sales funnel.]
- [Address any customer concerns mentioned in the notes.]
- [Review of the last interaction.]

**Next Steps**
- [Actionable tasks or commitments to close the deal.]

Account Details:
Current Stage: {ctx.stage}
Notes from previous interactions:
{notes}

Draft the agenda using the structure and content above. Do not include any other text."""
    return GenerationRequest(prompt=prompt)


def build_card_scan_request(image_base64: str, mime_type: str) -> GenerationRequest:
    prompt = (
        "Extract the following information from this business card and return it as a "
        f"JSON object with keys: {', '.join(CARD_FIELDS)}. "
        "Only return the JSON object, nothing else."
    )
    return GenerationRequest(prompt=prompt, mime_type=mime_type, inline_data=image_base64)


def build_account_dictation_request(transcript: str) -> GenerationRequest:
    prompt = (
        "Based on the following transcript, extract key information and return a JSON object "
        "with keys for companyName, servicesNeeded, value (as a number), monthlyValue (as a number), "
        "contactName, contactTitle, contactEmail, and contactPhone. If a value is not found, use a null. "
        "Do not include any other text besides the JSON. "
        f'Transcript: "{transcript.strip()}"'
    )
    return GenerationRequest(prompt=prompt, response_schema=ACCOUNT_DICTATION_SCHEMA)


def build_note_dictation_request(transcript: str) -> GenerationRequest:
    prompt = (
        "Analyze the following transcript of a sales call or meeting. Extract and structure the "
        "information into three categories: 'summary' (as bullet points), 'actions' (as a list of "
        "tasks that need to be done), and 'concerns' (customer issues or questions). Also, classify "
        "the overall sentiment of the conversation as 'Positive', 'Negative', or 'Neutral'. Return the "
        "result as a JSON object with the keys 'summary', 'actions', 'concerns', and 'sentiment'. If a "
        "category has no information, use an empty array. Do not include any text outside of the JSON object.\n"
        f'Transcript: "{transcript.strip()}"'
    )
    return GenerationRequest(prompt=prompt, response_schema=NOTE_DICTATION_SCHEMA)
