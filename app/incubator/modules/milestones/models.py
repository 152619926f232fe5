from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING

from sqlalchemy import Date, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.incubator.models import Base

if TYPE_CHECKING:
    from app.incubator.modules.deliverables.models import Deliverable


class Milestone(Base):
    __tablename__ = "milestones"
    __table_args__ = (
        Index("idx_milestones_department_status", "department_id", "status"),
        Index("idx_milestones_due_date", "due_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    title: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="Not Started")
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    department_id: Mapped[int] = mapped_column(ForeignKey("departments.id", ondelete="CASCADE"), nullable=False)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    # Set iff status == "Completed"
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    comments: Mapped[list["MilestoneComment"]] = relationship(
        "MilestoneComment",
        back_populates="milestone",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="MilestoneComment.created_at",
    )
    deliverables: Mapped[list["Deliverable"]] = relationship(
        "Deliverable",
        back_populates="milestone",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class MilestoneComment(Base):
    __tablename__ = "milestone_comments"
    __table_args__ = (
        Index("idx_milestone_comments_milestone", "milestone_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    milestone_id: Mapped[int] = mapped_column(ForeignKey("milestones.id", ondelete="CASCADE"), nullable=False)
    author_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    milestone: Mapped[Milestone] = relationship("Milestone", back_populates="comments")
