import os

class BaseConfig:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SESSION_TIMEOUT_MINUTES = int(os.environ.get("SESSION_TIMEOUT_MINUTES", 120))
    # Timetable grid bounds
    TIMETABLE_MAX_DAYS = int(os.environ.get("TIMETABLE_MAX_DAYS", 7))
    TIMETABLE_MAX_PERIODS = int(os.environ.get("TIMETABLE_MAX_PERIODS", 12))
    # Sections
    SECTION_DEFAULT_CAPACITY = int(os.environ.get("SECTION_DEFAULT_CAPACITY", 30))
    SECTION_MAX_CAPACITY = int(os.environ.get("SECTION_MAX_CAPACITY", 100))
    # Quiz retake defaults, applied when a quiz allows a single attempt
    QUIZ_DEFAULT_MIN_SCORE_TO_PASS = float(os.environ.get("QUIZ_DEFAULT_MIN_SCORE_TO_PASS", 60))
    QUIZ_DEFAULT_DAYS_BETWEEN_ATTEMPTS = float(os.environ.get("QUIZ_DEFAULT_DAYS_BETWEEN_ATTEMPTS", 1))
    QUIZ_NOTIFY_STUDENTS = os.environ.get("QUIZ_NOTIFY_STUDENTS", "true").lower() in ("1","true","yes","on")
    AUDIT_PAGE_SIZE = int(os.environ.get("AUDIT_PAGE_SIZE", 50))

class DevelopmentConfig(BaseConfig):
    # Default to instance/schoolgrid.db unless overridden
    INSTANCE_PATH = os.environ.get("FLASK_INSTANCE_PATH")
    @staticmethod
    def database_uri(instance_path: str) -> str:
        db_path = os.environ.get("DATABASE_PATH")
        if db_path:
            return f"sqlite:///{db_path}"
        return "sqlite:///" + os.path.join(instance_path, "schoolgrid.db")

class TestingConfig(BaseConfig):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.environ.get("TEST_DATABASE_URI", "sqlite:///:memory:")

class ProductionConfig(BaseConfig):
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URI", "sqlite:///schoolgrid.db")
