"""
Application Configuration
Loads and validates environment variables
"""
from pydantic_settings import BaseSettings
from typing import Optional
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Application
    APP_NAME: str = "Document Expiry Alerts"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"
    DEBUG: bool = True

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # MongoDB
    MONGODB_URL: str = "mongodb://localhost:27017"
    MONGODB_DB_NAME: str = "employee_records"
    MONGODB_TIMEOUT_MS: int = 5000

    # Email
    SMTP_HOST: str = "smtp.gmail.com"
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_USE_TLS: bool = True
    EMAIL_FROM: str = "alerts@company.com"
    EMAIL_FROM_NAME: str = "HR Compliance"
    EMAILS_DISABLED: bool = False
    ALERT_RECIPIENT_OVERRIDE: Optional[str] = None
    DASHBOARD_URL: str = "http://localhost:3000/employees"

    # Dispatch
    SEND_TIMEOUT_SECONDS: float = 10.0
    SEND_MIN_INTERVAL_SECONDS: float = 1.0  # provider caps ~20/sec, ~500/day
    CYCLE_TIMEOUT_SECONDS: float = 3600.0
    CLAIM_LEASE_SECONDS: int = 900

    # Scheduler
    SCHEDULER_ENABLED: bool = False
    CYCLE_CRON_HOUR: int = 8
    CYCLE_CRON_MINUTE: int = 0
    REFRESH_COMPANY_FOLDERS_MINUTES: int = 10
    REFRESH_EMPLOYEE_COUNTS_MINUTES: int = 10
    REFRESH_DOCUMENT_SUMMARY_MINUTES: int = 10
    REFRESH_COMPANY_STATISTICS_MINUTES: int = 120
    REFRESH_VISA_MONITORING_MINUTES: int = 360

    # Retention
    NOTIFICATION_RETENTION_DAYS: int = 30

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "logs/app.log"

    @property
    def email_configured(self) -> bool:
        """SMTP credentials present"""
        return bool(self.SMTP_USER and self.SMTP_PASSWORD)

    @property
    def refresh_intervals(self) -> dict:
        """Refresh interval (minutes) per aggregate view"""
        return {
            "company_document_folders": self.REFRESH_COMPANY_FOLDERS_MINUTES,
            "employee_counts_by_company": self.REFRESH_EMPLOYEE_COUNTS_MINUTES,
            "employee_document_summary": self.REFRESH_DOCUMENT_SUMMARY_MINUTES,
            "company_statistics": self.REFRESH_COMPANY_STATISTICS_MINUTES,
            "visa_expiry_monitoring": self.REFRESH_VISA_MONITORING_MINUTES,
        }

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


# Global settings instance
settings = get_settings()
