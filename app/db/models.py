from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy import text, ForeignKey, String, Enum, Index, Integer, JSON, Uuid, DateTime
import uuid
from datetime import datetime
from typing import Optional, List

checkin_state_enum = Enum(
    "in_progress", "completed", "aborted",
    name="checkin_state",
)


class Base(DeclarativeBase):
    pass


class CheckIn(Base):
    __tablename__ = "checkins"
    __table_args__ = (
        # at most one in-progress check-in per user and category slot
        Index(
            "uq_checkins_in_progress_slot",
            "user_id", "slot_key",
            unique=True,
            postgresql_where=text("state = 'in_progress'"),
            sqlite_where=text("state = 'in_progress'"),
        ),
        Index("ix_checkins_user_created", "user_id", "created_at"),
    )
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    category_id: Mapped[Optional[str]] = mapped_column(String)
    slot_key: Mapped[str] = mapped_column(String, nullable=False)
    state: Mapped[str] = mapped_column(checkin_state_enum, nullable=False, server_default=text("'in_progress'"))
    questions: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    answers: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    result: Mapped[Optional[dict]] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    recommendations: Mapped[List["Recommendation"]] = relationship(back_populates="checkin", cascade="all, delete")


class Recommendation(Base):
    __tablename__ = "recommendations"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    category_id: Mapped[Optional[str]] = mapped_column(String)
    checkin_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("checkins.id", ondelete="CASCADE"), index=True)
    checkin: Mapped["CheckIn"] = relationship(back_populates="recommendations")
    title: Mapped[str] = mapped_column(String, nullable=False)
    text: Mapped[str] = mapped_column(String, nullable=False)
    action: Mapped[Optional[str]] = mapped_column(String)
    why: Mapped[Optional[str]] = mapped_column(String)
    importance: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
