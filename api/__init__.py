from flask import Flask
from flasgger import Swagger
from flask_cors import CORS

from .config import get_config, validate_config
from .errors import register_error_handlers
from models import DBStorage
from services import EXTENSION_KEY, ServiceRegistry
from services.auth import AuthService
from services.mailer import Mailer
from services.oauth import OAuthService, build_providers
from services.tokens import TokenService, TokenSettings
from services.users import UserDirectory

# Minimal Swagger config: exposes /swagger.json and UI at /apidocs
SWAGGER_TEMPLATE = {
    "swagger": "2.0.0",
    "info": {
        "title": "Auth Server API",
        "version": "1.0.0",
        "description": "Registration, login, token refresh/revocation, OAuth sign-in and role-based user administration.",
    },
    "basePath": "/",  # We'll mount blueprints under /api/v1
    "schemes": ["http"],
    "securityDefinitions": {
        "Bearer": {
            "type": "apiKey",
            "name": "Authorization",
            "in": "header",
            "description": "Enter the token with the `Bearer ` prefix, e.g. \"Bearer abcde12345\"."
        }
    }
}

SWAGGER_CONFIG = {
    "headers": [],
    "specs": [
        {
            "endpoint": "apispec_1",
            "route": "/swagger.json",
            "rule_filter": lambda rule: True,   # include all endpoints
            "model_filter": lambda tag: True,   # include all models
        }
    ],
    "static_url_path": "/flasgger_static",
    "swagger_ui": True,
    "specs_route": "/apidocs/",
}


def build_services(config, storage=None, mailer=None, providers=None) -> ServiceRegistry:
    """Wire every service around one DBStorage. Anything passed in is used as-is."""
    if storage is None:
        storage = DBStorage(config["DATABASE_URL"], echo=config.get("SQL_ECHO", False))
        storage.reload()
    if mailer is None:
        mailer = Mailer.from_config(config)
    if providers is None:
        providers = build_providers(config)

    tokens = TokenService(storage, TokenSettings.from_config(config))
    auth = AuthService(
        storage,
        tokens,
        mailer,
        verification_expires=config["EMAIL_VERIFICATION_EXPIRES"],
        reset_expires=config["PASSWORD_RESET_EXPIRES"],
        protected_emails=config.get("PROTECTED_EMAILS", ()),
    )
    return ServiceRegistry(
        storage=storage,
        tokens=tokens,
        auth=auth,
        oauth=OAuthService(storage, tokens),
        users=UserDirectory(storage, tokens),
        mailer=mailer,
        providers=providers,
    )


def create_app(config_name: str | None = None, overrides: dict | None = None,
               storage=None, mailer=None, providers=None) -> Flask:
    """
    Application factory: creates and configures the Flask app.
      - Environment-based configuration (plus explicit overrides for tests)
      - Refuses to start with weak or shared token secrets
      - Storage, mailer and OAuth providers can be injected
    """
    app = Flask(__name__)

    # Load configuration (reads .env via get_config)
    app.config.from_object(get_config(config_name))
    if overrides:
        app.config.update(overrides)
    validate_config(app.config)

    # Cross-Origin Resource Sharing: enable for dev, configurable for prod
    CORS(
        app,
        resources={r"/*": {"origins": app.config.get("CORS_ORIGINS", "*")}},
        supports_credentials=True,
    )

    # Swagger UI and JSON
    Swagger(app, template=SWAGGER_TEMPLATE, config=SWAGGER_CONFIG)

    # Register global error handlers that return the uniform error envelope
    register_error_handlers(app)

    services = build_services(app.config, storage=storage, mailer=mailer, providers=providers)
    app.extensions[EXTENSION_KEY] = services

    from .health import bp as health_bp
    from .auth import bp as auth_bp
    from .users import bp as users_bp
    from .admin import bp as admin_bp
    from .cli import register_commands

    app.register_blueprint(health_bp, url_prefix="/api/v1")
    app.register_blueprint(auth_bp, url_prefix="/api/v1/auth")
    app.register_blueprint(users_bp, url_prefix="/api/v1/users")
    app.register_blueprint(admin_bp, url_prefix="/api/v1/admin")
    register_commands(app)

    # Ensure the DB session is removed at the end of each request/app context
    @app.teardown_appcontext
    def remove_session(exception=None):
        # This calls scoped_session.remove(), preventing connection leaks
        services.storage.close()

    @app.route("/")
    def root():
        return {
            "message": "Welcome to Auth Server API",
            "docs": "/apidocs/",
            "health": "/api/v1/health",
        }, 200

    return app
