from sqlalchemy import Column, String

from billing_relay_svc.models.base import Base


class User(Base):
    """Account directory entry, used to resolve an email address to a user id."""
    __tablename__ = 'users'

    id = Column(String(36), primary_key=True)
    email = Column(String, unique=True, nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email})>"
