import os
from dotenv import load_dotenv

load_dotenv()

DEBUG_ENVIRONMENTS = ("development", "test")

class Config:
    """
    Settings read straight from environment variables.
    """
    ENVIRONMENT: str = os.environ.get("ENVIRONMENT", "production")

    # Database
    DATABASE_URL: str = os.environ.get("DATABASE_URL")

    # Redis
    APPLICATION_REDIS_URL: str = os.environ.get("APPLICATION_REDIS_URL")
    RATE_LIMITER_REDIS_URL: str = os.environ.get("RATE_LIMITER_REDIS_URL", "memory://")

    # JWT and password settings
    SECRET_KEY: str = os.environ.get("SECRET_KEY")
    ALGORITHM: str = os.environ.get("ALGORITHM", "HS256")
    ACCESS_TOKEN_EXPIRE_MINUTES: int = int(os.environ.get("ACCESS_TOKEN_EXPIRE_MINUTES", 1440))
    BCRYPT_ROUNDS: int = int(os.environ.get("BCRYPT_ROUNDS", 12))
    PASSWORD_RESET_TOKEN_EXPIRE_MINUTES: int = int(os.environ.get("PASSWORD_RESET_TOKEN_EXPIRE_MINUTES", 60))

    # Front end and CORS
    FRONTEND_URL: str = os.environ.get("FRONTEND_URL", "http://localhost:3000")
    CORS_ORIGINS: list = [o.strip() for o in os.environ.get("CORS_ORIGINS", "*").split(",") if o.strip()]

    # Outgoing mail
    SMTP_HOST: str = os.environ.get("SMTP_HOST")
    SMTP_PORT: int = int(os.environ.get("SMTP_PORT", 465))
    SMTP_USERNAME: str = os.environ.get("SMTP_USERNAME")
    SMTP_PASSWORD: str = os.environ.get("SMTP_PASSWORD")
    SMTP_SENDER: str = os.environ.get("SMTP_SENDER", "no-reply@qrattend.local")

    # Attendance rules
    STATUS_SWEEP_INTERVAL_SECONDS: int = int(os.environ.get("STATUS_SWEEP_INTERVAL_SECONDS", 60))
    GEOFENCE_RADIUS_METERS: float = float(os.environ.get("GEOFENCE_RADIUS_METERS", 50))

    # Logging
    LOG_DIR: str = os.environ.get("LOG_DIR", "logs")
    LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "INFO")

    @property
    def expose_error_details(self) -> bool:
        """Error text and tracebacks go into 500 responses only in these environments."""
        return self.ENVIRONMENT.lower() in DEBUG_ENVIRONMENTS

# Single importable settings instance
settings = Config()
