from __future__ import annotations

from datetime import date, datetime, timedelta

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.incubator.models import Base


class Meeting(Base):
    __tablename__ = "meetings"
    __table_args__ = (
        Index("idx_meetings_department_date", "department_id", "meeting_date"),
        Index("idx_meetings_date_status", "meeting_date", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    agenda: Mapped[str | None] = mapped_column(Text, nullable=True)

    meeting_date: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    duration: Mapped[int] = mapped_column(Integer, nullable=False, default=60)  # minutes
    location: Mapped[str | None] = mapped_column(String(500), nullable=True)
    meeting_link: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    meeting_type: Mapped[str] = mapped_column(String(32), nullable=False)  # in_person, virtual, hybrid
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="scheduled")

    department_id: Mapped[int] = mapped_column(ForeignKey("departments.id", ondelete="CASCADE"), nullable=False)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    organizer_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    # Recurrence
    is_recurring: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    recurrence_frequency: Mapped[str | None] = mapped_column(String(16), nullable=True)  # daily, weekly, biweekly, monthly
    recurrence_end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    recurrence_occurrences: Mapped[int | None] = mapped_column(Integer, nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_private: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    attendees: Mapped[list["MeetingAttendee"]] = relationship(
        "MeetingAttendee",
        back_populates="meeting",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
        order_by="MeetingAttendee.id",
    )

    @property
    def end_time(self) -> datetime:
        return self.meeting_date + timedelta(minutes=self.duration or 0)

    def attendee_for(self, user_id: int) -> "MeetingAttendee | None":
        for a in self.attendees:
            if a.user_id == user_id:
                return a
        return None


class MeetingAttendee(Base):
    __tablename__ = "meeting_attendees"
    __table_args__ = (
        UniqueConstraint("meeting_id", "user_id", name="uq_meeting_attendees_meeting_user"),
        Index("idx_meeting_attendees_user", "user_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    meeting_id: Mapped[int] = mapped_column(ForeignKey("meetings.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")  # pending, accepted, declined, tentative
    response_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    meeting: Mapped[Meeting] = relationship("Meeting", back_populates="attendees")
