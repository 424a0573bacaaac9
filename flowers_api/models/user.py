import uuid

from sqlalchemy import Boolean, Column, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.sql import func

from flowers_api.database import Base

ROLE_ADMIN = "admin"
ROLE_CLIENT = "client"


class User(Base):
    """Shop account. Vendors have role "client"; a telegram_token enables their bot."""

    __tablename__ = "users"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(Text, unique=True)
    name = Column(Text)
    image = Column(Text)
    role = Column(Text, nullable=False, default=ROLE_CLIENT)
    block = Column(Boolean, nullable=False, default=True)
    telegram_token = Column(Text, index=True)
    telegram_id = Column(Text)
    location = Column(Text)
    plan = Column(Text, nullable=False, default="week")  # week, month, vip
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())
