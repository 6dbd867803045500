from sqlalchemy import Column, String
from sqlalchemy.orm import relationship

from models.base_model import Base, BaseModel
from models.role import role_permissions
from models.user import user_permissions


class Permission(BaseModel, Base):
    __tablename__ = "permissions"

    # Canonical identifier used in token claims, e.g. "read:users"
    name = Column(String(100), nullable=False, unique=True, index=True)
    resource = Column(String(64), nullable=False)
    action = Column(String(64), nullable=False)
    description = Column(String(255), nullable=True)

    roles = relationship("Role", secondary=role_permissions, back_populates="permissions")
    users = relationship("User", secondary=user_permissions, back_populates="permissions")

    def __repr__(self):
        return f"<Permission {self.name}>"
