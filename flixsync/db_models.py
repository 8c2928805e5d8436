"""SQLAlchemy ORM models backing the persistent state."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base

# Columns written by the sync engine; enrichment never touches them.
SYNC_OWNED_COLUMNS: tuple[str, ...] = (
    "title",
    "canonical_title",
    "group_title",
    "content_type",
    "cover",
    "quality",
    "year",
    "season",
    "episode",
    "series_id",
    "stream_id",
    "tvg_id",
    "content_hash",
    "updated_at",
)


class PlaylistRecord(Base):
    """A configured upstream playlist."""

    __tablename__ = "playlists"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    title: Mapped[str] = mapped_column(String(255))
    url: Mapped[str] = mapped_column(Text, unique=True)
    kind: Mapped[str] = mapped_column(String(16))
    last_synced_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    entries: Mapped[list["CatalogEntryRecord"]] = relationship(
        back_populates="playlist", cascade="all, delete-orphan", passive_deletes=True
    )


class CatalogEntryRecord(Base):
    """One playable item, unique per (playlist, stream URL)."""

    __tablename__ = "catalog_entries"
    __table_args__ = (
        UniqueConstraint("source_id", "url", name="uq_entry_source_url"),
        Index("ix_entry_source_type", "source_id", "content_type"),
        Index("ix_entry_canonical_title", "canonical_title"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    source_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("playlists.id", ondelete="CASCADE")
    )
    url: Mapped[str] = mapped_column(Text)
    title: Mapped[str] = mapped_column(Text)
    canonical_title: Mapped[str] = mapped_column(String(512))
    group_title: Mapped[str] = mapped_column(String(255), default="Uncategorized")
    content_type: Mapped[str] = mapped_column(String(16))
    cover: Mapped[str | None] = mapped_column(Text, nullable=True)
    quality: Mapped[str | None] = mapped_column(String(16), nullable=True)
    year: Mapped[str | None] = mapped_column(String(4), nullable=True)
    season: Mapped[int | None] = mapped_column(Integer, nullable=True)
    episode: Mapped[int | None] = mapped_column(Integer, nullable=True)
    series_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    stream_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    tvg_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    content_hash: Mapped[str] = mapped_column(String(40), default="")
    added_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    tmdb_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    poster_path: Mapped[str | None] = mapped_column(String(255), nullable=True)
    backdrop_path: Mapped[str | None] = mapped_column(String(255), nullable=True)
    metadata_updated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    metadata_checked_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    playlist: Mapped[PlaylistRecord] = relationship(back_populates="entries")


class ProgrammeRecord(Base):
    """Short EPG listing cached for a live channel."""

    __tablename__ = "programmes"
    __table_args__ = (Index("ix_programme_channel_start", "channel_url", "start"),)

    id: Mapped[str] = mapped_column(String(600), primary_key=True)
    source_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("playlists.id", ondelete="CASCADE")
    )
    channel_url: Mapped[str] = mapped_column(Text)
    title: Mapped[str] = mapped_column(Text)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    start: Mapped[datetime] = mapped_column(DateTime)
    end: Mapped[datetime] = mapped_column(DateTime)
