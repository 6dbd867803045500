"""
RefreshToken model: one row per issued refresh token (one login session),
so sessions can be rotated and revoked server-side.
Fields:
- token (unique) - the literal signed token string
- user_id (String(36)) - FK to users.id, cascades on account deletion
- expires_at - mirrors the token's own `exp` claim
- revoked (bool) - only ever flips false -> true
- user_agent, ip_address - client metadata captured at issuance for audit
"""
from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Text
from sqlalchemy.orm import relationship

from models.base_model import BaseModel, Base, as_utc, utcnow


class RefreshToken(BaseModel, Base):
    __tablename__ = "refresh_tokens"

    token = Column(Text, nullable=False, unique=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    revoked = Column(Boolean, default=False, nullable=False)
    user_agent = Column(String(512), nullable=True)
    ip_address = Column(String(64), nullable=True)

    user = relationship("User", back_populates="refresh_tokens")

    def is_expired(self, now=None) -> bool:
        return as_utc(self.expires_at) <= (now or utcnow())

    def __repr__(self):
        return f"<RefreshToken user={self.user_id} revoked={self.revoked}>"
