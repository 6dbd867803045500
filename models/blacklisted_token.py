from sqlalchemy import Column, DateTime, Text

from models.base_model import BaseModel, Base


class BlacklistedToken(BaseModel, Base):
    """Access token invalidated before its natural expiry (logout)."""
    __tablename__ = "blacklisted_tokens"

    token = Column(Text, nullable=False, unique=True)
    # Same instant as the token's `exp`; the row is prunable from then on
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)

    def __repr__(self):
        return f"<BlacklistedToken expires_at={self.expires_at}>"
