"""
Pipeline board: the live, stage-bucketed view of one user's accounts.

The board never edits its own columns. Writes go to the store and the board
changes only when the store's next snapshot arrives.
"""

import logging
from datetime import date, datetime
from typing import Dict, List, Optional

from pipeline import PipelineMetrics, compute_metrics, partition_by_stage
from schemas import AccountForm, AccountResponse
from stages import BUSINESS_INTEL, STAGE_NAMES, is_stage
from store import AccountCollection, StoreError

logger = logging.getLogger(__name__)

LOAD_FAILED = "Failed to load data."
MOVE_FAILED = "Failed to update account stage."
ADD_FAILED = "Failed to add new account."
UPDATE_FAILED = "Failed to update account."
DELETE_FAILED = "Failed to delete account."
NOTES_FAILED = "Failed to save note."


def to_number(raw) -> float:
    """Coerce a form number; anything unparseable becomes 0."""
    if raw is None or raw == "":
        return 0
    try:
        number = float(raw)
    except (TypeError, ValueError):
        return 0
    if number != number or number in (float("inf"), float("-inf")):
        return 0
    return number


def to_timestamp(raw: str) -> Optional[datetime]:
    """Turn a YYYY-MM-DD form date into a stored UTC midnight timestamp."""
    if not raw:
        return None
    return datetime.combine(date.fromisoformat(raw), datetime.min.time())


def form_fields(form: AccountForm) -> dict:
    """Store fields for a saved form: numbers coerced, dates converted."""
    fields = form.model_dump(exclude={"notes"})
    fields["value"] = to_number(form.value)
    fields["monthly_value"] = to_number(form.monthly_value)
    fields["expected_close_date"] = to_timestamp(form.expected_close_date)
    fields["next_follow_up_date"] = to_timestamp(form.next_follow_up_date)
    fields["notes"] = [note.model_dump() for note in form.notes]
    return fields


class BoardError(Exception):
    """A board write failed; the message is the generic banner text."""


class PipelineBoard:
    def __init__(self, collection: AccountCollection):
        self.collection = collection
        self.columns: Dict[str, List[AccountResponse]] = {name: [] for name in STAGE_NAMES}
        self.metrics = PipelineMetrics()
        self.error: Optional[str] = None
        self._unsubscribe = None

    @property
    def is_open(self):
        return self._unsubscribe is not None

    def open(self):
        if self._unsubscribe is None:
            self._unsubscribe = self.collection.on_snapshot(self._on_snapshot, self._on_error)

    def close(self):
        """Stop listening and drop everything the board was showing."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self.columns = {name: [] for name in STAGE_NAMES}
        self.metrics = PipelineMetrics()
        self.error = None

    def _on_snapshot(self, accounts):
        self.columns = partition_by_stage(accounts)
        self.metrics = compute_metrics(self.accounts())

    def _on_error(self, exc):
        logger.error("Account subscription failed: %s", exc)
        self.error = LOAD_FAILED

    def accounts(self) -> List[AccountResponse]:
        return [account for name in STAGE_NAMES for account in self.columns[name]]

    def find(self, account_id: str) -> Optional[AccountResponse]:
        for account in self.accounts():
            if account.id == account_id:
                return account
        return None

    def refresh_metrics(self, today: Optional[date] = None) -> PipelineMetrics:
        """Recompute metrics against a given day (follow-up window moves daily)."""
        self.metrics = compute_metrics(self.accounts(), today=today)
        return self.metrics

    # ----- writes -----
    def move_account(self, account_id: str, stage: str):
        """Drop an account on a stage column."""
        if not is_stage(stage):
            raise ValueError(f"Unknown stage: {stage}")
        try:
            self.collection.update(account_id, {"stage": stage})
        except StoreError as e:
            logger.error("Stage move for %s failed: %s", account_id, e)
            self.error = MOVE_FAILED
            raise BoardError(MOVE_FAILED) from e

    def add_account(self, form: AccountForm) -> str:
        fields = form_fields(form)
        fields.update(
            stage=BUSINESS_INTEL,
            created_at=datetime.utcnow(),
            notes=[],
            deal_score=50,
        )
        try:
            return self.collection.add(fields)
        except StoreError as e:
            self.error = ADD_FAILED
            raise BoardError(ADD_FAILED) from e

    def update_account(self, account_id: str, form: AccountForm):
        try:
            self.collection.update(account_id, form_fields(form))
        except StoreError as e:
            self.error = UPDATE_FAILED
            raise BoardError(UPDATE_FAILED) from e

    def delete_account(self, account_id: str):
        try:
            self.collection.delete(account_id)
        except StoreError as e:
            self.error = DELETE_FAILED
            raise BoardError(DELETE_FAILED) from e

    def save_notes(self, account_id: str, notes: list):
        try:
            self.collection.update(account_id, {"notes": [note.model_dump() for note in notes]})
        except StoreError as e:
            self.error = NOTES_FAILED
            raise BoardError(NOTES_FAILED) from e
