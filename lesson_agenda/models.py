from datetime import datetime

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Integer, String, Time, UniqueConstraint
from sqlalchemy.orm import relationship

from lesson_agenda.core.database import Base


class LessonType(Base):
    __tablename__ = "lesson_types"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    frequency = Column(String, default="weekly", nullable=False)  # daily | weekly | biweekly | monthly
    duration_minutes = Column(Integer, nullable=True)
    is_group_lesson = Column(Boolean, default=False, nullable=False)
    color = Column(String, nullable=True)
    icon = Column(String, nullable=True)

    agreements = relationship("Agreement", back_populates="lesson_type")


class Agreement(Base):
    """Recurring lesson rule. Written by the agreement store, read-only here."""
    __tablename__ = "lesson_agreements"
    id = Column(Integer, primary_key=True, index=True)
    teacher_id = Column(Integer, nullable=False, index=True)
    student_id = Column(Integer, nullable=True, index=True)  # empty for group-only agreements
    lesson_type_id = Column(Integer, ForeignKey("lesson_types.id"), nullable=False, index=True)
    day_of_week = Column(Integer, nullable=False)  # 0 = Sunday
    start_time = Column(Time, nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    notes = Column(String, nullable=True)

    lesson_type = relationship("LessonType", back_populates="agreements")
    deviations = relationship("Deviation", back_populates="agreement", cascade="all, delete-orphan", passive_deletes=True)


class Deviation(Base):
    __tablename__ = "lesson_appointment_deviations"
    # One row per agreement and original occurrence; concurrent writers rely on it
    __table_args__ = (
        UniqueConstraint("agreement_id", "original_date", name="uq_deviation_agreement_original_date"),
    )
    id = Column(Integer, primary_key=True, index=True)
    agreement_id = Column(Integer, ForeignKey("lesson_agreements.id", ondelete="CASCADE"), nullable=False, index=True)
    original_date = Column(Date, nullable=False)
    original_start_time = Column(Time, nullable=False)
    actual_date = Column(Date, nullable=False)
    actual_start_time = Column(Time, nullable=False)
    is_cancelled = Column(Boolean, default=False, nullable=False)
    recurring = Column(Boolean, default=False, nullable=False)
    recurring_end_date = Column(Date, nullable=True)
    reason = Column(String, nullable=True)
    created_by_user_id = Column(Integer, nullable=True)
    last_updated_by_user_id = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=True)

    agreement = relationship("Agreement", back_populates="deviations")


# Installs the before_flush validity guard for every Session in the process
from lesson_agenda.services import validity_guard  # noqa: E402,F401
