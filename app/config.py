from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import Optional, List


class Settings(BaseSettings):
    # Database Configuration
    database_url: Optional[str] = None
    db_username: Optional[str] = None
    db_password: Optional[str] = None
    db_host: str = "localhost"
    db_port: str = "5432"
    db_name: Optional[str] = None
    db_pool_timeout: int = 10  # seconds to wait for a pooled connection
    db_statement_timeout_ms: int = 15000  # PostgreSQL only

    # Authentication
    secret_key: str = "your-secret-key-here"
    algorithm: str = "HS256"
    access_token_expire_minutes: Optional[int] = 30

    @field_validator('algorithm', mode='before')
    @classmethod
    def parse_algorithm(cls, v):
        if v is None or v == '':
            return "HS256"
        return v

    @field_validator('access_token_expire_minutes', mode='before')
    @classmethod
    def parse_token_expire(cls, v):
        if v is None or v == '':
            return 30
        return int(v)

    # AWS S3 Configuration (issue / work progress attachments)
    aws_access_key_id: Optional[str] = None
    aws_secret_access_key: Optional[str] = None
    aws_region: str = "eu-central-1"
    s3_bucket: str = "civicflow"
    upload_dir: str = "uploads"

    # Firebase Cloud Messaging
    firebase_service_account_path: Optional[str] = None

    # Workflow
    submission_window_days: int = 7  # default bidding window for new tenders

    # Misc
    log_level: str = "INFO"
    cors_origins: List[str] = ["http://localhost:8081", "http://localhost:19006", "http://127.0.0.1:8081"]

    @property
    def database_connection_url(self) -> str:
        """Build database URL from individual components or use direct URL"""
        if all([self.db_username, self.db_password, self.db_host, self.db_port, self.db_name]):
            return f"postgresql://{self.db_username}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"
        elif self.database_url:
            return self.database_url
        else:
            return "sqlite:///./civicflow.db"  # Fallback to SQLite

    class Config:
        env_file = ".env"


settings = Settings()
