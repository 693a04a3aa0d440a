"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
For Pydantic request/response schemas, see schemas.py.
"""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text

from messagely.storage import Base


class User(Base):
    """
    Registered user.

    Table: users
    Primary Key: username (unique, never changes)
    """
    __tablename__ = "users"

    username = Column(String(64), primary_key=True)
    password = Column(String(255), nullable=False)  # bcrypt hash
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    phone = Column(String(32), nullable=False)
    join_at = Column(DateTime, nullable=False)
    last_login_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<User(username={self.username})>"


class Message(Base):
    """
    Message sent from one user to another.

    Table: messages
    Only read_at changes after creation.
    """
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    from_username = Column(String(64), ForeignKey("users.username"), nullable=False, index=True)
    to_username = Column(String(64), ForeignKey("users.username"), nullable=False, index=True)
    body = Column(Text, nullable=False)
    sent_at = Column(DateTime, nullable=False, index=True)
    read_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<Message(id={self.id}, from={self.from_username}, to={self.to_username})>"
