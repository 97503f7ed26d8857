from routes.auth import auth_bp
from routes.health import health_bp

__all__ = ["auth_bp", "health_bp"]
