import os
import logging
from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from schoolgrid.config import DevelopmentConfig, ProductionConfig, TestingConfig
from datetime import timedelta
from werkzeug.security import generate_password_hash

logger = logging.getLogger(__name__)
logging.basicConfig(level=logging.INFO)

app = Flask(__name__, instance_relative_config=True)

# Select config based on FLASK_ENV
env = os.environ.get("FLASK_ENV", "development").lower()
if env == "production":
    app.config.from_object(ProductionConfig)
elif env == "testing":
    app.config.from_object(TestingConfig)
else:
    app.config.from_object(DevelopmentConfig)

# Compute DB URI for development using instance path
if env == "development":
    instance_path = app.instance_path
    os.makedirs(instance_path, exist_ok=True)
    app.config['SQLALCHEMY_DATABASE_URI'] = DevelopmentConfig.database_uri(instance_path)

db = SQLAlchemy(app)

# Configure session lifetime
timeout_minutes = app.config.get('SESSION_TIMEOUT_MINUTES', 120)
try:
    app.permanent_session_lifetime = timedelta(minutes=int(timeout_minutes))
except (TypeError, ValueError):
    app.permanent_session_lifetime = timedelta(minutes=120)

# Load DB-backed policy settings into app.config if available
def _parse_setting(val):
    v = str(val).strip()
    low = v.lower()
    if low in ("1", "true", "yes", "on"):
        return True
    if low in ("0", "false", "no", "off"):
        return False
    try:
        return int(v)
    except ValueError:
        return v

from schoolgrid.models import SystemSetting, User, School

def bootstrap_admin(username, password_hash=None, password=None):
    """Ensure an admin account exists and belongs to a school.

    The first school is used, or the default one from ``SCHOOL_CODE`` /
    ``SCHOOL_NAME`` is created. An existing admin without a school is attached.
    """
    school = School.query.order_by(School.id.asc()).first()
    if school is None:
        school = School(name=os.environ.get("SCHOOL_NAME", "Main Campus"),
                        code=os.environ.get("SCHOOL_CODE", "MAIN"))
        db.session.add(school)
        db.session.flush()
    user = User.query.filter_by(username=username).first()
    if user is None:
        pw_hash = password_hash if password_hash else generate_password_hash(password or "admin")
        user = User(username=username, password_hash=pw_hash, role="admin", school_id=school.id)
        db.session.add(user)
        logger.info("Bootstrapped admin user %s", username)
    elif user.school_id is None:
        user.school_id = school.id
        logger.info("Attached admin user %s to school %s", username, school.code)
    db.session.commit()
    return user

with app.app_context():
    db.create_all()
    for s in SystemSetting.query.all():
        app.config[s.key] = _parse_setting(s.value)

    admin_user = os.environ.get("ADMIN_USERNAME")
    if admin_user:
        bootstrap_admin(admin_user, os.environ.get("ADMIN_PASSWORD_HASH"), os.environ.get("ADMIN_PASSWORD"))

from schoolgrid import routes
from schoolgrid.clock import current_clock
from schoolgrid.sections import sweep_sessions

@app.cli.command("sweep-sessions")
def sweep_sessions_command():
    """Deactivate sections whose session window has ended."""
    expired = sweep_sessions(current_clock(app).now())
    print(f"{expired} sections expired")
