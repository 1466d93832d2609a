"""
Doctor Profile Model - Stores the profile created when a registration is submitted.
"""
from sqlalchemy import Column, Integer, String, DateTime, JSON, Enum, func
from ..database import Base
from .schemas import AccessLevel, DocumentType, IdentityStatus

class DoctorProfile(Base):
    """
    Doctor Profile Model - Result of a completed registration wizard

    Fields:
    - id: Primary key
    - email / phone: Verified contact channels
    - password_hash: Hashed password (the clear password never leaves the wizard)
    - document_type / document_number: Identity or license document, unique
    - university, graduation_year, medical_board, years_of_experience, bio: Professional info
    - specialty_id, sub_specialties: Chosen specialties
    - selected_features, working_hours: Dashboard configuration (JSON)
    - license_verification: Registry verdict at submission time (JSON)
    - identity_status / access_level: Identity verification outcome
    - terms_accepted_at: When the terms were accepted
    - created_at: When the profile was created
    """
    __tablename__ = "doctor_profiles"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    phone = Column(String, nullable=False)
    password_hash = Column(String, nullable=False)
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False)
    document_type = Column(Enum(DocumentType), nullable=False)
    document_number = Column(String, unique=True, index=True, nullable=False)
    university = Column(String, nullable=False)
    graduation_year = Column(Integer, nullable=True)
    medical_board = Column(String, nullable=False)
    years_of_experience = Column(Integer, nullable=True)
    bio = Column(String, nullable=True)
    specialty_id = Column(String, nullable=False)
    sub_specialties = Column(JSON, nullable=True)
    selected_features = Column(JSON, nullable=True)
    working_hours = Column(JSON, nullable=True)
    license_verification = Column(JSON, nullable=True)
    identity_status = Column(Enum(IdentityStatus), nullable=False)
    access_level = Column(Enum(AccessLevel), nullable=False)
    terms_accepted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<DoctorProfile(id={self.id}, email='{self.email}', document_number='{self.document_number}')>"
