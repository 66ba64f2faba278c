from datetime import date, datetime, time
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Frequency(str, Enum):
    daily = "daily"
    weekly = "weekly"
    biweekly = "biweekly"
    monthly = "monthly"


class Scope(str, Enum):
    only_this = "only_this"
    this_and_future = "this_and_future"


class Outcome(str, Enum):
    single_deleted = "single_deleted"
    recurring_deleted = "recurring_deleted"
    recurring_shifted = "recurring_shifted"
    recurring_ended = "recurring_ended"
    override_inserted = "override_inserted"
    single_replaced_with_override = "single_replaced_with_override"
    deleted = "deleted"
    updated = "updated"


class OccurrenceKind(str, Enum):
    agreement = "agreement"
    deviation = "deviation"


# --- Read-side snapshots handed to the generator ---
class Agreement(BaseModel):
    """Flattened, immutable view of one lesson agreement and its lesson type."""
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: int
    teacher_id: int
    student_id: Optional[int] = None
    lesson_type_id: int
    lesson_type_name: str = ""
    frequency: Frequency = Frequency.weekly
    duration_minutes: Optional[int] = None
    is_group_lesson: bool = False
    day_of_week: int = Field(ge=0, le=6)
    start_time: time
    start_date: date
    end_date: Optional[date] = None
    is_active: bool = True


class Deviation(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: int
    agreement_id: int
    original_date: date
    original_start_time: time
    actual_date: date
    actual_start_time: time
    is_cancelled: bool = False
    recurring: bool = False
    recurring_end_date: Optional[date] = None
    reason: Optional[str] = None


# --- API payloads ---
class AgreementResponse(Agreement):
    notes: Optional[str] = None


class DeviationResponse(Deviation):
    created_by_user_id: Optional[int] = None
    last_updated_by_user_id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class MoveOccurrenceRequest(BaseModel):
    agreement_id: int
    # Any day in the week of the occurrence being moved
    week_date: date
    actual_date: date
    actual_start_time: time
    scope: Scope = Scope.only_this
    reason: Optional[str] = None
    user_id: Optional[int] = None
    # Pull actual_date back into the occurrence's own week, keeping its weekday
    keep_in_week: bool = False


class CancelOccurrenceRequest(BaseModel):
    agreement_id: int
    week_date: date
    scope: Scope = Scope.only_this
    reason: Optional[str] = None
    user_id: Optional[int] = None


class RestoreOccurrenceRequest(BaseModel):
    agreement_id: int
    week_date: date
    scope: Scope = Scope.only_this
    user_id: Optional[int] = None


class EndRecurringRequest(BaseModel):
    week_date: date
    user_id: Optional[int] = None


class ShiftRecurringRequest(BaseModel):
    user_id: Optional[int] = None


class OutcomeResponse(BaseModel):
    outcome: Outcome
    agreement_id: int
    deviation_id: Optional[int] = None


class OccurrenceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    kind: OccurrenceKind
    title: str
    start: datetime
    end: datetime
    agreement_id: int
    agreement_ids: List[int]
    student_ids: List[int]
    lesson_type_id: int
    is_deviation: bool
    is_cancelled: bool
    is_group_lesson: bool
    is_recurring_override: bool
    deviation_id: Optional[int] = None
    original_date: Optional[date] = None
    original_start_time: Optional[time] = None
    reason: Optional[str] = None
    is_pending: bool = False


class AgendaResponse(BaseModel):
    teacher_id: int
    start_date: date
    end_date: date
    items: List[OccurrenceResponse]
