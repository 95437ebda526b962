"""
Pipeline aggregation: bucket accounts by funnel stage and compute the
headline metrics shown above the board.

Everything here works on any objects exposing ``stage``, ``value`` and
``next_follow_up_date`` attributes, so it runs the same on snapshot
documents and on plain test doubles.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Optional

from stages import ACTIVE_STAGES, STAGE_NAMES, is_active, is_stage

logger = logging.getLogger(__name__)

FOLLOW_UP_WINDOW_DAYS = 7


def follow_up_key(account):
    """Sort key: scheduled follow-ups by date, then accounts with none."""
    when = account.next_follow_up_date
    if when is None:
        return (1, 0)
    return (0, when)


def partition_by_stage(accounts: Iterable) -> Dict[str, list]:
    """Group accounts into one list per funnel stage, each ordered by follow-up date.

    Every stage gets a key, even when empty. Accounts whose stage is not a
    funnel stage cannot be placed on the board and are skipped.
    """
    columns: Dict[str, list] = {name: [] for name in STAGE_NAMES}
    for account in accounts:
        if not is_stage(account.stage):
            logger.warning("Account %s has unknown stage %r", getattr(account, "id", "?"), account.stage)
            continue
        columns[account.stage].append(account)
    for name in STAGE_NAMES:
        columns[name].sort(key=follow_up_key)
    return columns


def _as_date(value) -> date:
    return value.date() if isinstance(value, datetime) else value


def is_follow_up_due(account, today: date) -> bool:
    """True when the next follow-up falls within [today, today + 7 days]."""
    when = account.next_follow_up_date
    if when is None:
        return False
    due = _as_date(when)
    return today <= due <= today + timedelta(days=FOLLOW_UP_WINDOW_DAYS)


@dataclass
class StageBar:
    stage: str
    value: float
    height_percent: float


@dataclass
class PipelineMetrics:
    total_pipeline_value: float = 0
    active_deals: int = 0
    upcoming_follow_ups: int = 0
    stage_values: Dict[str, float] = field(default_factory=dict)
    max_stage_value: float = 0

    @property
    def stage_chart(self) -> List[StageBar]:
        """Per-stage bars scaled against the largest active stage."""
        bars = []
        for stage in ACTIVE_STAGES:
            value = self.stage_values.get(stage, 0)
            height = (value / self.max_stage_value) * 100 if self.max_stage_value > 0 else 0
            bars.append(StageBar(stage=stage, value=value, height_percent=height))
        return bars


def compute_metrics(accounts: Iterable, today: Optional[date] = None) -> PipelineMetrics:
    today = today or date.today()
    stage_values = {stage: 0 for stage in ACTIVE_STAGES}
    total = 0
    active = 0
    upcoming = 0

    for account in accounts:
        if is_follow_up_due(account, today):
            upcoming += 1
        if not is_active(account.stage):
            continue
        amount = account.value or 0
        total += amount
        active += 1
        stage_values[account.stage] += amount

    return PipelineMetrics(
        total_pipeline_value=total,
        active_deals=active,
        upcoming_follow_ups=upcoming,
        stage_values=stage_values,
        max_stage_value=max(stage_values.values()) if stage_values else 0,
    )
