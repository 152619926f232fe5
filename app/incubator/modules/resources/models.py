from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.incubator.models import Base


class Resource(Base):
    __tablename__ = "resources"
    __table_args__ = (
        Index("idx_resources_department_type", "department_id", "resource_type"),
        Index("idx_resources_is_public", "is_public"),
        Index("idx_resources_access_level", "access_level"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    resource_type: Mapped[str] = mapped_column(String(16), nullable=False, default="Link")  # Link, File, Document
    link: Mapped[str | None] = mapped_column(String(2048), nullable=True)

    # Uploaded file (type == "File")
    storage_key: Mapped[str | None] = mapped_column(String(512), nullable=True)
    file_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    file_size: Mapped[int | None] = mapped_column(Integer, nullable=True)  # bytes
    file_type: Mapped[str | None] = mapped_column(String(128), nullable=True)

    department_id: Mapped[int] = mapped_column(ForeignKey("departments.id", ondelete="CASCADE"), nullable=False)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    tags: Mapped[list] = mapped_column(JSON, nullable=False, default=list)  # lower-cased, de-duplicated
    is_public: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    access_level: Mapped[str] = mapped_column(String(16), nullable=False, default="department")  # public, department, restricted

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    access_entries: Mapped[list["ResourceAccess"]] = relationship(
        "ResourceAccess",
        back_populates="resource",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )

    @property
    def access_list(self) -> list[int]:
        return [a.user_id for a in self.access_entries]


class ResourceAccess(Base):
    """Explicit grant for a restricted resource."""

    __tablename__ = "resource_access"
    __table_args__ = (
        UniqueConstraint("resource_id", "user_id", name="uq_resource_access_resource_user"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    resource_id: Mapped[int] = mapped_column(ForeignKey("resources.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    resource: Mapped[Resource] = relationship("Resource", back_populates="access_entries")
