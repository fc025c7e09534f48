from sqlalchemy import Column, String, DateTime, Text, ForeignKey
from sqlalchemy.sql import func

from facepunch.database import Base


class FaceCollection(Base):
    __tablename__ = "face_collection"

    collection_id = Column(String(128), primary_key=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())


class EnrolledFace(Base):
    """One indexed face in a collection; the embedding is stored as a JSON list"""
    __tablename__ = "enrolled_face"

    face_id = Column(String(64), primary_key=True)
    collection_id = Column(String(128), ForeignKey("face_collection.collection_id"), nullable=False, index=True)
    external_image_id = Column(String(255), nullable=True)
    embedding = Column(Text, nullable=False)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
