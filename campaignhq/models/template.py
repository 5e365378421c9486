"""
EmailTemplate model for renderable campaign content.
"""
from sqlalchemy import Column, Integer, String, DateTime, Text
from ..database import Base
from ..timeutils import utcnow


class EmailTemplate(Base):
    __tablename__ = "email_templates"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    subject = Column(String(500), nullable=False, default="")
    html_content = Column(Text, nullable=False)
    text_content = Column(Text, nullable=True)  # derived from html when empty
    status = Column(String(20), default="draft", index=True)  # draft, active, archived
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
