from sqlalchemy import Column, String, DateTime, JSON
from sqlalchemy.sql import func

from ..database import Base

class StoredState(Base):
    """
    Stored State Model - One persisted value of the key-value store

    Fields:
    - namespace: Owner of the value (one namespace per browser client)
    - key: Key inside the namespace (e.g. 'doctor_registration_session')
    - payload: JSON document written by the engine
    - updated_at: Last write time, used to purge abandoned state
    """
    __tablename__ = "onboarding_state"

    namespace = Column(String(64), primary_key=True)
    key = Column(String(128), primary_key=True)
    payload = Column(JSON, nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    def __repr__(self):
        return f"<StoredState(namespace='{self.namespace}', key='{self.key}', updated_at='{self.updated_at}')>"
