from sqlalchemy import Column, String, DateTime, JSON
from sqlalchemy.sql import func

from postguard.core.database import Base


class ProtectionRecord(Base):
    __tablename__ = "protection_records"

    key = Column(String(512), primary_key=True)
    value = Column(JSON, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True, index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class ProtectionLock(Base):
    __tablename__ = "protection_locks"

    key = Column(String(512), primary_key=True)
    owner = Column(String(64), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
