"""Process-wide Flask extension handles, bound to the app inside create_app()."""
from flask_login import LoginManager
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy
from flask_wtf import CSRFProtect

db = SQLAlchemy()
migrate = Migrate()
login_manager = LoginManager()
# Session-bound anti-forgery token, checked on every non-safe method.
csrf = CSRFProtect()
