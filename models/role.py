import logging

from sqlalchemy import Boolean, Column, ForeignKey, String, Table
from sqlalchemy.orm import relationship

from models.base_model import Base, BaseModel
from models.user import user_roles

logger = logging.getLogger(__name__)

role_permissions = Table(
    "role_permissions",
    Base.metadata,
    Column("role_id", String(36), ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
    Column("permission_id", String(36), ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True),
)


class Role(BaseModel, Base):
    __tablename__ = "roles"

    name = Column(String(64), nullable=False, unique=True, index=True)
    description = Column(String(255), nullable=True)
    # Auto-assigned to new accounts; see find_default_role() for the tie-break
    is_default = Column(Boolean, nullable=False, default=False)

    users = relationship("User", secondary=user_roles, back_populates="roles")
    permissions = relationship("Permission", secondary=role_permissions, back_populates="roles", lazy="selectin")

    def __repr__(self):
        return f"<Role {self.name}>"


def find_default_role(session):
    """
    Return the role new accounts receive, or None.

    Several roles may carry is_default; the earliest created wins
    (name breaks ties) and the ambiguity is logged.
    """
    candidates = (
        session.query(Role)
        .filter(Role.is_default.is_(True))
        .order_by(Role.created_at.asc(), Role.name.asc())
        .all()
    )
    if len(candidates) > 1:
        logger.warning(
            "Multiple default roles flagged (%s); assigning %s",
            ", ".join(r.name for r in candidates),
            candidates[0].name,
        )
    return candidates[0] if candidates else None
