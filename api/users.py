from __future__ import annotations

from flask import Blueprint, jsonify, request

from api.auth import clear_refresh_cookie
from models.schemas.user import (
    ChangePasswordSchema,
    DeleteAccountSchema,
    ProfileUpdateSchema,
    SessionOutSchema,
    UserOutSchema,
)
from services import current_services
from utils.decorators import jwt_required, owner_or_permission_required, self_or_role_required

bp = Blueprint("users", __name__)

profile_update_schema = ProfileUpdateSchema()
change_password_schema = ChangePasswordSchema()
delete_account_schema = DeleteAccountSchema()
user_out_schema = UserOutSchema()
sessions_out_schema = SessionOutSchema(many=True)


@bp.get("/profile")
@jwt_required()
def get_profile(identity):
    """
    Get current user's profile
    ---
    tags:
      - Users
    security:
      - Bearer: []
    responses:
      200:
        description: OK
      401:
        description: Unauthorized
    """
    user = current_services().users.get(identity.user_id)
    return jsonify({"data": user_out_schema.dump(user)}), 200


@bp.patch("/profile")
@jwt_required()
def update_profile(identity):
    """
    Update current user's name or avatar
    ---
    tags:
      - Users
    security:
      - Bearer: []
    consumes:
      - application/json
    parameters:
      - in: body
        name: body
        schema:
          type: object
          properties:
            first_name: { type: string }
            last_name: { type: string }
            avatar: { type: string }
    responses:
      200:
        description: Updated profile
      422:
        description: Validation error
    """
    data = profile_update_schema.load(request.get_json(silent=True) or {})
    user = current_services().auth.update_profile(identity.user_id, **data)
    return jsonify({"data": user_out_schema.dump(user)}), 200


@bp.patch("/password")
@jwt_required()
def change_password(identity):
    """
    Change current user's password (signs out every session)
    ---
    tags:
      - Users
    security:
      - Bearer: []
    consumes:
      - application/json
    parameters:
      - in: body
        name: body
        schema:
          type: object
          properties:
            current_password: { type: string }
            new_password: { type: string }
    responses:
      200:
        description: Password changed
      401:
        description: Current password is incorrect
    """
    data = change_password_schema.load(request.get_json(silent=True) or {})
    current_services().auth.change_password(identity.user_id, data["current_password"], data["new_password"])
    return clear_refresh_cookie(jsonify({"message": "Password changed successfully"}))


@bp.delete("/account")
@jwt_required()
def delete_account(identity):
    """
    Delete current user's account (password confirmation required)
    ---
    tags:
      - Users
    security:
      - Bearer: []
    consumes:
      - application/json
    parameters:
      - in: body
        name: body
        schema:
          type: object
          properties:
            password: { type: string }
    responses:
      200:
        description: Account deleted
      401:
        description: Password is incorrect
      403:
        description: Protected account
    """
    data = delete_account_schema.load(request.get_json(silent=True) or {})
    current_services().auth.delete_account(identity.user_id, data["password"])
    return clear_refresh_cookie(jsonify({"message": "Account deleted successfully"}))


@bp.get("/<user_id>")
@self_or_role_required(["admin", "moderator"])
def get_user(user_id, identity):
    """
    Get a user - self, admin or moderator
    ---
    tags:
      - Users
    security:
      - Bearer: []
    parameters:
      - in: path
        name: user_id
        type: string
        required: true
    responses:
      200: { description: OK }
      403: { description: Forbidden }
      404: { description: Not found }
    """
    user = current_services().users.get(user_id)
    return jsonify({"data": user_out_schema.dump(user)}), 200


@bp.get("/<user_id>/sessions")
@owner_or_permission_required(lambda **kw: kw["user_id"], ["read:users"])
def list_sessions(user_id, identity):
    """
    Active sessions of a user - owner, or holders of read:users
    ---
    tags:
      - Users
    security:
      - Bearer: []
    parameters:
      - in: path
        name: user_id
        type: string
        required: true
    responses:
      200: { description: OK }
      403: { description: Forbidden }
    """
    rows = current_services().users.sessions(user_id)
    return jsonify({"data": sessions_out_schema.dump(rows)}), 200
