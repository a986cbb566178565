from sqlalchemy import Column, Integer, String, Boolean, DateTime, Enum, Index, UniqueConstraint, CheckConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from app.db.base import Base


user_role_enum = Enum('admin', 'user', name='user_role_enum', native_enum=False)


class User(Base):
    __tablename__ = "users"

    # Primary key
    id = Column(Integer, primary_key=True, autoincrement=True, index=True)

    # User identification fields
    email = Column(String(255), unique=True, nullable=False, index=True)

    # Authentication
    password_hash = Column(String(255), nullable=False)

    # Global role: admins see and manage every project
    role = Column(user_role_enum, nullable=False, server_default='user')

    # Status fields
    is_active = Column(Boolean, default=True, nullable=False)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
    last_login = Column(DateTime(timezone=True), nullable=True)

    # Relations
    projects = relationship(
        "Project",
        back_populates="creator",
        passive_deletes=True,
    )
    assignments = relationship(
        "ProjectUser",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    # Indexes for better query performance
    __table_args__ = (
        Index('idx_user_email_active', 'email', 'is_active'),
        Index('idx_user_created_at', 'created_at'),
        UniqueConstraint('email', name='uq_user_email'),
        CheckConstraint('length(email) >= 5', name='ck_user_email_length'),
    )

    def __repr__(self):
        return f"<User(id={self.id}, email='{self.email}', role='{self.role}')>"
