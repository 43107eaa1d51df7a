import os
from typing import List
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    service_name: str = os.getenv("SERVICE_NAME", "ledger-service")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    jwt_issuer: str = os.getenv("JWT_ISSUER", "luazinha-ledger")
    jwt_secret: str = os.getenv("JWT_SECRET", "dev-secret-change")
    jwt_ttl_seconds: int = int(os.getenv("JWT_TTL_SECONDS", "3600"))

    # DATABASE_URL wins over the individual MySQL parts when set
    database_url: str = os.getenv("DATABASE_URL", "")
    mysql_user: str = os.getenv("MYSQL_USER", "root")
    mysql_password: str = os.getenv("MYSQL_PASSWORD", "root")
    mysql_host: str = os.getenv("MYSQL_HOST", "mysql")
    mysql_db: str = os.getenv("MYSQL_DB", "ledger")
    mysql_port: int = int(os.getenv("MYSQL_PORT", "3306"))

    tx_max_attempts: int = int(os.getenv("TX_MAX_ATTEMPTS", "5"))
    tx_retry_base_delay: float = float(os.getenv("TX_RETRY_BASE_DELAY", "0.05"))
    tx_retry_max_delay: float = float(os.getenv("TX_RETRY_MAX_DELAY", "1.0"))

    owner_user_ids: str = os.getenv("OWNER_USER_IDS", "")

    @property
    def owner_allowlist(self) -> List[str]:
        """Operators allowed to mint or burn currency (comma-separated env var)"""
        return [uid.strip() for uid in self.owner_user_ids.split(",") if uid.strip()]

settings = Settings()
