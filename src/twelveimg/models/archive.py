import uuid

from sqlalchemy import BigInteger, Column, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from twelveimg.db.database import Base
from twelveimg.schemas.enum import ArchiveStatus


class GalleryArchive(Base):
    """
    A ZIP archive of one gallery and the durable queue job that builds it.

    Only the worker mutates a row once it is enqueued; every mutation is a
    conditional update keyed on the expected status (and lease owner).
    """
    __tablename__ = "gallery_archives"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    gallery_id = Column(UUID(as_uuid=True), ForeignKey("galleries.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String, nullable=False, default=ArchiveStatus.PENDING.value)

    version = Column(Integer, nullable=False, default=1)
    images_hash = Column(String, nullable=False)
    image_count = Column(Integer, nullable=False, default=0)
    storage_path = Column(String, nullable=False)
    file_size_bytes = Column(BigInteger, nullable=True)
    checksum = Column(String, nullable=True)

    priority = Column(Integer, nullable=False, default=0)
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)
    lease_owner = Column(String, nullable=True)
    lease_expires_at = Column(DateTime(timezone=True), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    last_error = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    gallery = relationship("Gallery", back_populates="archives")

    __table_args__ = (
        Index("ix_gallery_archives_status_priority", "status", "priority", "created_at"),
        Index("ix_gallery_archives_lease", "status", "lease_expires_at"),
        UniqueConstraint("gallery_id", "version", name="uq_gallery_archives_gallery_version"),
        # at most one pending or processing job per gallery
        Index(
            "uq_gallery_archives_active",
            "gallery_id",
            unique=True,
            postgresql_where=text("status IN ('pending', 'processing')"),
        ),
    )

    def __repr__(self) -> str:
        return f"<GalleryArchive(id={self.id}, gallery_id={self.gallery_id}, status={self.status})>"
