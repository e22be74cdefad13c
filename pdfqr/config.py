"""Application settings and validation."""

import os
from pathlib import Path

BASE = Path(__file__).resolve().parent.parent


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class Settings:
    ENV: str
    DATABASE_URL: str
    JWT_SECRET: str
    JWT_ALGORITHM: str
    JWT_EXPIRE_HOURS: int
    ALLOW_INSECURE_JWT: bool
    ALLOW_DEV_CORS: bool
    RUN_MIGRATIONS_ON_STARTUP: bool
    DEFAULT_ADMIN_PASSWORD: str
    LOG_LEVEL: str
    AUDIT_EXPORT_DEFAULT_DAYS: int
    LOGIN_WINDOW_SECONDS: int

    def __init__(self):
        self.ENV = os.getenv("ENV", "dev").lower()
        self.DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{BASE / 'pdfqr.db'}")
        self.JWT_SECRET = os.getenv("JWT_SECRET", "change_me_for_prod")
        self.JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
        self.JWT_EXPIRE_HOURS = int(os.getenv("JWT_EXPIRE_HOURS", "24"))
        self.ALLOW_INSECURE_JWT = _env_bool("ALLOW_INSECURE_JWT", "false")
        self.ALLOW_DEV_CORS = _env_bool("ALLOW_DEV_CORS", "true")
        self.RUN_MIGRATIONS_ON_STARTUP = _env_bool("RUN_MIGRATIONS_ON_STARTUP", "true")
        self.DEFAULT_ADMIN_PASSWORD = os.getenv("DEFAULT_ADMIN_PASSWORD", "admin123")
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
        self.AUDIT_EXPORT_DEFAULT_DAYS = int(os.getenv("AUDIT_EXPORT_DEFAULT_DAYS", "30"))
        self.LOGIN_WINDOW_SECONDS = int(os.getenv("LOGIN_WINDOW_SECONDS", "900"))
        self._validate()

    def _validate(self):
        if not self.DATABASE_URL.startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be a sqlite:/// URL; the migrations use SQLite DDL")
        if self.ENV != "dev" and not self.ALLOW_INSECURE_JWT and self.JWT_SECRET == "change_me_for_prod":
            raise RuntimeError("JWT_SECRET must be set to a non-default value in non-dev environments")
        if self.ENV != "dev" and self.DEFAULT_ADMIN_PASSWORD == "admin123":
            raise RuntimeError("DEFAULT_ADMIN_PASSWORD must be changed in non-dev environments")
        if self.AUDIT_EXPORT_DEFAULT_DAYS < 1:
            raise RuntimeError("AUDIT_EXPORT_DEFAULT_DAYS must be >= 1")
        if self.LOGIN_WINDOW_SECONDS < 1:
            raise RuntimeError("LOGIN_WINDOW_SECONDS must be >= 1")


settings = Settings()
