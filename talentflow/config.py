"""Application configuration."""
from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    """Application settings."""
    
    # Application
    app_name: str = "Talentflow Pipeline Automation"
    app_version: str = "1.0.0"
    debug: bool = True
    log_level: str = "INFO"
    
    # CORS
    allowed_origins: str = "http://localhost:5173,http://localhost:3000"
    
    # Storage ("mongodb" or "memory")
    storage_backend: str = "mongodb"
    mongodb_url: str = "mongodb://localhost:27017"
    mongodb_db_name: str = "talentflow"
    
    # Background loop
    scheduler_enabled: bool = True
    scheduler_poll_seconds: float = 5.0
    time_elapsed_scan_seconds: float = 300.0
    escalation_scan_seconds: float = 300.0
    
    # Action execution
    max_action_attempts: int = 5
    retry_base_seconds: float = 30.0
    retry_max_seconds: float = 3600.0
    collaborator_timeout_seconds: float = 10.0
    max_cascade_depth: int = 8
    job_lease_seconds: float = 300.0
    execution_claim_retention_hours: float = 168.0
    
    # Collaborators
    notification_webhook_url: str = ""
    interview_service_url: str = ""
    
    # Approvals
    default_manager_role: str = "hiring_manager"
    admin_recipients: str = "admin"
    operator_roles: str = "admin"
    
    @property
    def allowed_origins_list(self) -> List[str]:
        """Get allowed origins as a list."""
        return [origin.strip() for origin in self.allowed_origins.split(",")]
    
    @property
    def admin_recipients_list(self) -> List[str]:
        """Get escalation recipients as a list."""
        return [r.strip() for r in self.admin_recipients.split(",") if r.strip()]
    
    @property
    def operator_roles_list(self) -> List[str]:
        """Roles allowed to cancel any approval request."""
        return [r.strip() for r in self.operator_roles.split(",") if r.strip()]
    
    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
