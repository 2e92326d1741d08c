import os
from dataclasses import dataclass

from dotenv import load_dotenv
from fastapi import Request

load_dotenv()


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    app_name: str = "Civic-Sense API"
    database_url: str = "mongodb://localhost:27017"
    database_name: str = "civic_sense"
    mongo_transactions: bool = False
    jwt_secret: str = "dev-secret-change"
    jwt_algorithm: str = "HS256"
    jwt_expire_minutes: int = 60 * 24 * 14  # 14 days
    report_vote_threshold: int = 3
    drive_vote_threshold: int = 5
    voting_window_days: int = 7
    escalation_days: int = 7
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            app_name=os.getenv("APP_NAME", cls.app_name),
            database_url=os.getenv("DATABASE_URL", cls.database_url),
            database_name=os.getenv("DATABASE_NAME", cls.database_name),
            mongo_transactions=_env_bool("MONGO_TRANSACTIONS"),
            jwt_secret=os.getenv("JWT_SECRET", cls.jwt_secret),
            jwt_expire_minutes=int(os.getenv("JWT_EXPIRE_MINUTES", cls.jwt_expire_minutes)),
            report_vote_threshold=int(os.getenv("REPORT_VOTE_THRESHOLD", cls.report_vote_threshold)),
            drive_vote_threshold=int(os.getenv("DRIVE_VOTE_THRESHOLD", cls.drive_vote_threshold)),
            voting_window_days=int(os.getenv("VOTING_WINDOW_DAYS", cls.voting_window_days)),
            escalation_days=int(os.getenv("ESCALATION_DAYS", cls.escalation_days)),
            log_level=os.getenv("LOG_LEVEL", cls.log_level).upper(),
        )


def get_settings(request: Request) -> Settings:
    return request.app.state.settings
