"""
Persistent entities of the credential store.

Importing the package registers every mapper on the shared declarative Base.
The DBStorage handle itself is built by whoever owns the process lifecycle
(api.create_app or a test fixture); there is no module-level instance.
"""
from models.base_model import Base, as_utc, utcnow
from models.user import User, normalize_email
from models.role import Role, find_default_role
from models.permission import Permission
from models.refresh_token import RefreshToken
from models.blacklisted_token import BlacklistedToken
from models.db_storage import DBStorage

__all__ = [
    "Base",
    "BlacklistedToken",
    "DBStorage",
    "Permission",
    "RefreshToken",
    "Role",
    "User",
    "as_utc",
    "find_default_role",
    "normalize_email",
    "utcnow",
]
