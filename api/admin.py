"""
Admin blueprint (mounted at /admin):
- GET    /admin/users                       admin, moderator
- GET    /admin/users/<user_id>             admin, moderator
- PATCH  /admin/users/<user_id>             admin
- PATCH  /admin/users/<user_id>/status      admin
- PUT    /admin/users/<user_id>/roles       admin
- DELETE /admin/users/<user_id>/roles/<id>  admin
- DELETE /admin/users/<user_id>             delete:users
- GET    /admin/roles                       read:roles + read:permissions
"""
from __future__ import annotations

import logging
import math
from typing import Tuple

from flask import Blueprint, abort, jsonify, request

from models.schemas.user import (
    AdminUserUpdateSchema,
    AssignRolesSchema,
    RoleOutSchema,
    UserListQuerySchema,
    UserOutSchema,
    UserStatusSchema,
)
from services import current_services
from services.errors import Forbidden
from utils.decorators import all_permissions_required, permissions_required, roles_required

logger = logging.getLogger(__name__)

MAX_LIMIT = 100

bp = Blueprint("admin", __name__)

user_update_schema = AdminUserUpdateSchema()
user_status_schema = UserStatusSchema()
assign_roles_schema = AssignRolesSchema()
user_list_query_schema = UserListQuerySchema()
user_out_schema = UserOutSchema()
users_out_schema = UserOutSchema(many=True)
roles_out_schema = RoleOutSchema(many=True)


def parse_pagination(default_limit: int = 10) -> Tuple[int, int]:
    try:
        page = int(request.args.get("page", "1"))
        limit = int(request.args.get("limit", str(default_limit)))
        page = max(page, 1)
        limit = max(1, min(limit, MAX_LIMIT))
        return page, limit
    except ValueError:
        abort(400, description="page and limit must be integers")


@bp.get("/users")
@roles_required(["admin", "moderator"])
def list_users(identity):
    """
    List users with filters and pagination - admin, moderator
    ---
    tags:
      - Admin
    security:
      - Bearer: []
    parameters:
      - { in: query, name: page, type: integer }
      - { in: query, name: limit, type: integer }
      - { in: query, name: search, type: string }
      - { in: query, name: role, type: string }
      - { in: query, name: is_active, type: boolean }
      - { in: query, name: email_verified, type: boolean }
    responses:
      200: { description: OK }
      403: { description: Forbidden }
    """
    page, limit = parse_pagination()
    filters = user_list_query_schema.load(
        {k: v for k, v in request.args.items() if k in user_list_query_schema.fields}
    )
    rows, total = current_services().users.list_users(page=page, limit=limit, **filters)
    return jsonify(
        {
            "data": users_out_schema.dump(rows),
            "meta": {
                "page": page,
                "limit": limit,
                "total": total,
                "total_pages": math.ceil(total / limit) if total else 0,
            },
        }
    ), 200


@bp.get("/users/<user_id>")
@roles_required(["admin", "moderator"])
def get_user(user_id, identity):
    """
    Get a user - admin, moderator
    ---
    tags:
      - Admin
    security:
      - Bearer: []
    parameters:
      - { in: path, name: user_id, type: string, required: true }
    responses:
      200: { description: OK }
      404: { description: Not found }
    """
    user = current_services().users.get(user_id)
    return jsonify({"data": user_out_schema.dump(user)}), 200


@bp.patch("/users/<user_id>")
@roles_required(["admin"])
def update_user(user_id, identity):
    """
    Update a user's email or name - admin
    ---
    tags:
      - Admin
    security:
      - Bearer: []
    parameters:
      - { in: path, name: user_id, type: string, required: true }
      - in: body
        name: body
        schema:
          type: object
          properties:
            email: { type: string }
            first_name: { type: string }
            last_name: { type: string }
    responses:
      200: { description: OK }
      409: { description: Email already taken }
    """
    data = user_update_schema.load(request.get_json(silent=True) or {})
    user = current_services().users.update(user_id, **data)
    logger.info("User %s updated by admin %s", user_id, identity.user_id)
    return jsonify({"data": user_out_schema.dump(user)}), 200


@bp.patch("/users/<user_id>/status")
@roles_required(["admin"])
def update_user_status(user_id, identity):
    """
    Activate or deactivate a user - admin
    ---
    tags:
      - Admin
    security:
      - Bearer: []
    parameters:
      - { in: path, name: user_id, type: string, required: true }
      - in: body
        name: body
        schema:
          type: object
          properties:
            is_active: { type: boolean }
    responses:
      200: { description: OK }
    """
    data = user_status_schema.load(request.get_json(silent=True) or {})
    if user_id == identity.user_id and not data["is_active"]:
        raise Forbidden("You cannot deactivate your own account")
    user = current_services().users.set_active(user_id, data["is_active"])
    logger.info("User %s status set to %s by admin %s", user_id, data["is_active"], identity.user_id)
    return jsonify(
        {
            "data": user_out_schema.dump(user),
            "message": f"User {'activated' if user.is_active else 'deactivated'} successfully",
        }
    ), 200


@bp.put("/users/<user_id>/roles")
@roles_required(["admin"])
def assign_roles(user_id, identity):
    """
    Replace a user's roles - admin
    ---
    tags:
      - Admin
    security:
      - Bearer: []
    parameters:
      - { in: path, name: user_id, type: string, required: true }
      - in: body
        name: body
        schema:
          type: object
          properties:
            role_ids:
              type: array
              items: { type: string }
    responses:
      200: { description: OK }
      404: { description: User or role not found }
    """
    data = assign_roles_schema.load(request.get_json(silent=True) or {})
    user = current_services().users.assign_roles(user_id, data["role_ids"])
    logger.info("Roles of user %s replaced by admin %s", user_id, identity.user_id)
    return jsonify({"data": user_out_schema.dump(user)}), 200


@bp.delete("/users/<user_id>/roles/<role_id>")
@roles_required(["admin"])
def remove_role(user_id, role_id, identity):
    """
    Remove one role from a user - admin
    ---
    tags:
      - Admin
    security:
      - Bearer: []
    parameters:
      - { in: path, name: user_id, type: string, required: true }
      - { in: path, name: role_id, type: string, required: true }
    responses:
      200: { description: OK }
    """
    user = current_services().users.remove_role(user_id, role_id)
    return jsonify({"data": user_out_schema.dump(user)}), 200


@bp.delete("/users/<user_id>")
@permissions_required(["delete:users"])
def delete_user(user_id, identity):
    """
    Delete a user - holders of delete:users
    ---
    tags:
      - Admin
    security:
      - Bearer: []
    parameters:
      - { in: path, name: user_id, type: string, required: true }
    responses:
      200: { description: Deleted }
      403: { description: Protected account }
      404: { description: Not found }
    """
    services = current_services()
    user = services.users.get(user_id)
    services.auth.delete_user(user)
    logger.info("User %s deleted by admin %s", user_id, identity.user_id)
    return jsonify({"message": "User deleted successfully"}), 200


@bp.get("/roles")
@all_permissions_required(["read:roles", "read:permissions"])
def list_roles(identity):
    """
    Role catalogue with permissions
    ---
    tags:
      - Admin
    security:
      - Bearer: []
    responses:
      200: { description: OK }
    """
    return jsonify({"data": roles_out_schema.dump(current_services().users.roles())}), 200
