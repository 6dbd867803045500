"""
Flask CLI commands:
- flask --app api init-db       create tables
- flask --app api seed          default roles/permissions (+ admin account)
- flask --app api sweep-tokens  purge expired refresh sessions and blacklist rows
"""
import logging

import click
from flask import current_app

from models.seed import seed_catalogue
from models.user import User, normalize_email
from services import current_services
from utils.security import hash_password

logger = logging.getLogger(__name__)


def ensure_admin(storage, roles: dict, email: str, password: str) -> bool:
    """Create the verified admin account unless it exists. True if created."""
    email = normalize_email(email)
    if storage.users().filter(User.email == email).first() is not None:
        return False
    with storage.transaction() as session:
        admin = User(
            email=email,
            password_hash=hash_password(password),
            first_name="Admin",
            last_name="User",
            is_active=True,
            email_verified=True,
        )
        admin.roles.append(roles["admin"])
        session.add(admin)
    logger.info("Admin account created: %s", admin.id)
    return True


def register_commands(app):
    @app.cli.command("init-db")
    def init_db():
        """Create database tables."""
        current_services().storage.reload()
        click.echo("Database initialised.")

    @app.cli.command("seed")
    @click.option("--admin-email", default=None, help="Defaults to ADMIN_EMAIL.")
    @click.option("--admin-password", default=None, help="Defaults to ADMIN_PASSWORD; no admin is created without one.")
    def seed(admin_email, admin_password):
        """Create default roles and permissions, and the admin account."""
        storage = current_services().storage
        roles = seed_catalogue(storage)
        click.echo(f"Roles: {', '.join(sorted(roles))}")

        admin_email = admin_email or current_app.config.get("ADMIN_EMAIL")
        admin_password = admin_password or current_app.config.get("ADMIN_PASSWORD")
        if not admin_password:
            click.echo("No admin password given; skipping admin account.")
            return
        if ensure_admin(storage, roles, admin_email, admin_password):
            click.echo(f"Admin account created: {admin_email}")
        else:
            click.echo(f"Admin account already exists: {admin_email}")

    @app.cli.command("sweep-tokens")
    def sweep_tokens():
        """Delete expired refresh sessions and blacklisted access tokens."""
        refresh_count, blacklist_count = current_services().tokens.sweep_expired()
        click.echo(f"Removed {refresh_count} refresh token(s) and {blacklist_count} blacklisted token(s).")
