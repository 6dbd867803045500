"""
Business services of the auth server.

The application factory builds one ServiceRegistry per app (all services
share the injected DBStorage) and stores it in app.extensions.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict

from flask import current_app

EXTENSION_KEY = "auth_server"


@dataclass
class ServiceRegistry:
    storage: object
    tokens: object
    auth: object
    oauth: object
    users: object
    mailer: object
    providers: Dict[str, object] = field(default_factory=dict)


def current_services() -> ServiceRegistry:
    return current_app.extensions[EXTENSION_KEY]
