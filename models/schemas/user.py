import re

from marshmallow import Schema, fields, pre_load, validates, validate, ValidationError

from services.authz import flatten_permissions

# At least one lowercase, one uppercase, one digit and one of @$!%*?&
PASSWORD_RULES = (
    (re.compile(r"[a-z]"), "one lowercase letter"),
    (re.compile(r"[A-Z]"), "one uppercase letter"),
    (re.compile(r"\d"), "one number"),
    (re.compile(r"[@$!%*?&]"), "one special character (@$!%*?&)"),
)
NAME_RE = re.compile(r"^[a-zA-Z\s'-]+$")


def _norm_email(v):
    return v.strip().lower() if isinstance(v, str) else v


def check_password_strength(value: str) -> None:
    if len(value) < 8:
        raise ValidationError("Password must be at least 8 characters long.")
    if len(value) > 100:
        raise ValidationError("Password must be less than 100 characters.")
    missing = [label for pattern, label in PASSWORD_RULES if not pattern.search(value)]
    if missing:
        raise ValidationError("Password must contain at least " + ", ".join(missing) + ".")


def _check_name(value):
    if value is not None and not NAME_RE.match(value):
        raise ValidationError("Name contains invalid characters.")


class _EmailNormalizing(Schema):
    @pre_load
    def normalize(self, data, **kwargs):
        if isinstance(data, dict) and "email" in data:
            data = dict(data)
            data["email"] = _norm_email(data["email"])
        return data


class RegisterSchema(_EmailNormalizing):
    email = fields.Email(required=True)
    password = fields.String(required=True, load_only=True)
    first_name = fields.String(allow_none=True, validate=validate.Length(min=1, max=50))
    last_name = fields.String(allow_none=True, validate=validate.Length(min=1, max=50))

    @validates("password")
    def validate_password(self, value, **kwargs):
        check_password_strength(value)

    @validates("first_name")
    def validate_first_name(self, value, **kwargs):
        _check_name(value)

    @validates("last_name")
    def validate_last_name(self, value, **kwargs):
        _check_name(value)


class LoginSchema(_EmailNormalizing):
    email = fields.Email(required=True)
    password = fields.String(required=True, validate=validate.Length(min=1))


class EmailSchema(_EmailNormalizing):
    email = fields.Email(required=True)


class ResetPasswordSchema(Schema):
    token = fields.String(required=True, validate=validate.Length(min=1))
    new_password = fields.String(required=True, load_only=True)

    @validates("new_password")
    def validate_password(self, value, **kwargs):
        check_password_strength(value)


class ChangePasswordSchema(Schema):
    current_password = fields.String(required=True, validate=validate.Length(min=1))
    new_password = fields.String(required=True, load_only=True)

    @validates("new_password")
    def validate_password(self, value, **kwargs):
        check_password_strength(value)


class ProfileUpdateSchema(Schema):
    first_name = fields.String(validate=validate.Length(min=1, max=50))
    last_name = fields.String(validate=validate.Length(min=1, max=50))
    avatar = fields.Url()

    @validates("first_name")
    def validate_first_name(self, value, **kwargs):
        _check_name(value)

    @validates("last_name")
    def validate_last_name(self, value, **kwargs):
        _check_name(value)


class DeleteAccountSchema(Schema):
    password = fields.String(required=True, validate=validate.Length(min=1))


class AdminUserUpdateSchema(ProfileUpdateSchema, _EmailNormalizing):
    email = fields.Email()


class UserStatusSchema(Schema):
    is_active = fields.Boolean(required=True)


class AssignRolesSchema(Schema):
    role_ids = fields.List(fields.String(), required=True)


class UserListQuerySchema(Schema):
    search = fields.String()
    role = fields.String()
    is_active = fields.Boolean()
    email_verified = fields.Boolean()


class RoleOutSchema(Schema):
    id = fields.String()
    name = fields.String()
    description = fields.String(allow_none=True)
    is_default = fields.Boolean()
    permissions = fields.Method("get_permissions")

    def get_permissions(self, obj):
        return [p.name for p in obj.permissions]


class UserOutSchema(Schema):
    id = fields.String(allow_none=False)
    email = fields.String()
    first_name = fields.String(allow_none=True)
    last_name = fields.String(allow_none=True)
    avatar = fields.String(allow_none=True)
    is_active = fields.Boolean()
    email_verified = fields.Boolean()
    last_login_at = fields.DateTime(allow_none=True)
    created_at = fields.DateTime()
    updated_at = fields.DateTime()
    roles = fields.Method("get_roles")
    permissions = fields.Method("get_permissions")

    def get_roles(self, obj):
        return obj.role_names

    def get_permissions(self, obj):
        return flatten_permissions(obj)


class SessionOutSchema(Schema):
    id = fields.String()
    user_agent = fields.String(allow_none=True)
    ip_address = fields.String(allow_none=True)
    created_at = fields.DateTime()
    expires_at = fields.DateTime()
