"""SQLAlchemy ORM models.

These models define the database schema. DAOs convert these to Pydantic
domain models before returning to services - SQLAlchemy objects should
never leak outside the DAO layer.
"""

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from skill_runtime.database import Base
from skill_runtime.enums import SkillStatus, SkillVersionStatus


class SystemSettingModel(Base):
    """Generic key/value system setting.

    Lists (extra index URLs, manual packages, ...) are stored as JSON arrays.
    """

    __tablename__ = "system_settings"

    key = Column(String, primary_key=True)
    value = Column(Text, nullable=False, default="")
    updated_at = Column(
        DateTime,
        nullable=False,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
    )


class SkillModel(Base):
    """Skill (plugin) ORM model."""

    __tablename__ = "skills"

    id = Column(Integer, primary_key=True, autoincrement=True)
    slug = Column(String, unique=True, nullable=False, index=True)
    display_name = Column(String, nullable=False)
    status = Column(String, nullable=False, default=SkillStatus.ACTIVE.value)
    # Plain id (no FK) to avoid a skills <-> skill_versions constraint cycle.
    default_version_id = Column(Integer, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    versions = relationship(
        "SkillVersionModel",
        back_populates="skill",
        cascade="all, delete-orphan",
    )


class SkillVersionModel(Base):
    """One published version of a skill with its manifest."""

    __tablename__ = "skill_versions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    skill_id = Column(
        Integer,
        ForeignKey("skills.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    version = Column(String, nullable=False)
    status = Column(String, nullable=False, default=SkillVersionStatus.PENDING.value)
    manifest_json = Column(Text, nullable=True)  # raw JSON, parsed leniently
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    activated_at = Column(DateTime, nullable=True)

    skill = relationship("SkillModel", back_populates="versions")
