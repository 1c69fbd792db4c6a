import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from twelveimg.db.database import Base


class Gallery(Base):
    __tablename__ = "galleries"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String, nullable=False)
    cover_image_id = Column(UUID(as_uuid=True), ForeignKey("images.id", ondelete="SET NULL", use_alter=True), nullable=True)
    download_enabled = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    user = relationship("User", back_populates="galleries")
    images = relationship(
        "Image",
        back_populates="gallery",
        cascade="all, delete-orphan",
        foreign_keys="Image.gallery_id",
        order_by="Image.position",
    )
    archives = relationship("GalleryArchive", back_populates="gallery", cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"<Gallery(id={self.id}, title={self.title})>"
