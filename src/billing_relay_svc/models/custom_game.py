from sqlalchemy import JSON, Column, DateTime, String

from billing_relay_svc.models.base import Base, new_id, utcnow


class CustomGame(Base):
    __tablename__ = 'custom_games'

    id = Column(String(64), primary_key=True, default=new_id)
    user_id = Column(String(36), nullable=True, index=True)
    game_data = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<CustomGame(id={self.id}, user_id={self.user_id})>"
