import os
from functools import lru_cache
from pathlib import Path
from typing import Optional


MONTH_BUCKET_MODES = ("month_name", "year_month")


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        session_secret: str,
        session_max_age_hours: int,
        dashboard_month_buckets: str,
        alert_sweep_secs: int,
        frontend_url: str,
        smtp_host: Optional[str],
        smtp_port: int,
        smtp_user: Optional[str],
        smtp_password: Optional[str],
        smtp_sender: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.session_secret = session_secret
        self.session_max_age_hours = session_max_age_hours
        self.dashboard_month_buckets = dashboard_month_buckets
        self.alert_sweep_secs = alert_sweep_secs
        self.frontend_url = frontend_url
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_sender = smtp_sender


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINTRACK_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "fintrack.db"
    database_url = os.getenv("FINTRACK_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("FINTRACK_TIMEZONE", "Europe/Berlin")
    session_secret = os.getenv(
        "FINTRACK_SESSION_SECRET",
        "3f1c9a52d0be47e88a6b2c71f5d94e06a8c3b1d7e29f4a60c5b8d1e3f7a2c904",
    )
    session_max_age_hours = int(os.getenv("FINTRACK_SESSION_MAX_AGE_HOURS", "720"))
    month_buckets = os.getenv("FINTRACK_DASHBOARD_MONTH_BUCKETS", "month_name")
    if month_buckets not in MONTH_BUCKET_MODES:
        raise ValueError(
            f"FINTRACK_DASHBOARD_MONTH_BUCKETS must be one of {MONTH_BUCKET_MODES}"
        )
    alert_sweep_secs = int(os.getenv("FINTRACK_ALERT_SWEEP_SECS", "60"))
    frontend_url = os.getenv("FINTRACK_FRONTEND_URL", "http://localhost:3000")
    return Settings(
        database_url=database_url,
        timezone=timezone,
        session_secret=session_secret,
        session_max_age_hours=session_max_age_hours,
        dashboard_month_buckets=month_buckets,
        alert_sweep_secs=alert_sweep_secs,
        frontend_url=frontend_url,
        smtp_host=os.getenv("FINTRACK_SMTP_HOST") or None,
        smtp_port=int(os.getenv("FINTRACK_SMTP_PORT", "587")),
        smtp_user=os.getenv("FINTRACK_SMTP_USER") or None,
        smtp_password=os.getenv("FINTRACK_SMTP_PASSWORD") or None,
        smtp_sender=os.getenv(
            "FINTRACK_SMTP_SENDER", "Finance Tracker <no-reply@localhost>"
        ),
    )
