"""Chat models."""

from sqlalchemy import ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from safe_delete.models.base import BaseModel


class ChatRoom(BaseModel):
    """Conversation created by a user."""

    __tablename__ = "chat_rooms"

    created_by: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)


class ChatParticipant(BaseModel):
    """Membership of a user in a chat room."""

    __tablename__ = "chat_participants"

    chat_room_id: Mapped[str] = mapped_column(String(36), ForeignKey("chat_rooms.id"), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)


class Message(BaseModel):
    """Message posted to a chat room."""

    __tablename__ = "messages"

    chat_room_id: Mapped[str] = mapped_column(String(36), ForeignKey("chat_rooms.id"), nullable=False, index=True)
    sender_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
