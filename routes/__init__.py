from .health import health_bp
from .auth import auth_bp
from .messages import messages_bp
from .admin import admin_bp
