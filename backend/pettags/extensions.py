from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_cors import CORS
import os

# Flask extensions singletons

db = SQLAlchemy()
migrate = Migrate()

# Allowed origins from env (comma-separated); the public web app is always allowed.
_allowed = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
_origins = [o.strip() for o in _allowed.split(",") if o.strip()] if _allowed else []
_frontend = (os.getenv("FRONTEND_URL") or "").strip().rstrip("/")
if _frontend and _frontend not in _origins:
    _origins.append(_frontend)
if not _origins and os.getenv("FLASK_ENV", "development").lower() != "production":
    _origins = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:5173",
    ]
cors = CORS(resources={r"/api/*": {"origins": _origins}, r"/uploads/*": {"origins": "*"}})
