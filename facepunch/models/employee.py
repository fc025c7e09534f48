from sqlalchemy import Column, Integer, String, DateTime, Float

from facepunch.database import Base


class Employee(Base):
    """Directory row. Managed elsewhere; this service reads it and keeps the face fields current."""
    __tablename__ = "employee"

    emp_id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    emp_code = Column(String(64), nullable=True)
    ward_id = Column(Integer, nullable=True)
    department_id = Column(Integer, nullable=True)

    # Face recognition fields
    face_image_ref = Column(String(500), nullable=True)
    face_id = Column(String(64), nullable=True, index=True)
    face_confidence = Column(Float, nullable=True)
    face_enrolled_at = Column(DateTime, nullable=True)


class User(Base):
    __tablename__ = "users"

    user_id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    username = Column(String(255), nullable=False)
