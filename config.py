from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    app_name: str = "Event Proposal API"
    debug: bool = False
    log_level: str = "INFO"

    database_url: str = "sqlite+aiosqlite:///./event_proposals.db"
    # File metadata lives in its own database; it never shares a transaction with database_url.
    document_store_url: str = "sqlite+aiosqlite:///./proposal_files.db"
    blob_storage_dir: str = "./storage/blobs"
    cors_origins: str = "http://localhost:3000,http://127.0.0.1:3000"

    reviewer_roles: str = "admin,reviewer"
    # Role-targeted review notifications go to this role; every reviewer role can read them.
    reviewer_notification_role: str = "reviewer"
    notification_expiry_days: int = 90
    max_upload_bytes: int = 10 * 1024 * 1024
    allowed_mime_types: str = (
        "application/pdf,"
        "application/msword,"
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document,"
        "image/png,image/jpeg"
    )

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @property
    def reviewer_role_set(self) -> frozenset[str]:
        return frozenset(r.strip() for r in self.reviewer_roles.split(",") if r.strip())

    @property
    def allowed_mime_type_set(self) -> frozenset[str]:
        return frozenset(m.strip() for m in self.allowed_mime_types.split(",") if m.strip())


settings = Settings()
