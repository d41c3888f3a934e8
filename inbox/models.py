"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
For the Pydantic message record and API schemas, see schemas.py.
"""

from sqlalchemy import Column, DateTime, Index, String, Text
from sqlalchemy.orm import declarative_base

# Base class for SQLAlchemy models
Base = declarative_base()


class MessageRecord(Base):
    """
    SQLAlchemy model for stored chat messages.

    Table: messages
    Primary Key: external_message_id (ensures idempotency)
    """
    __tablename__ = "messages"

    external_message_id = Column(String, primary_key=True)
    conversation_id = Column(String, nullable=False, index=True)
    from_number = Column(String, nullable=False)
    to_number = Column(String, nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    content_type = Column(String, nullable=False, default="text")
    body = Column(Text, nullable=False, default="")
    status = Column(String, nullable=False, default="pending", index=True)
    sender_display_name = Column(String, nullable=False)
    record_created_at = Column(DateTime(timezone=True), nullable=False)
    record_updated_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_messages_conversation_timestamp", "conversation_id", "timestamp"),
    )
