import os
from typing import Optional

from dotenv import load_dotenv
from loguru import logger


# Variables whose values are never written to the log
SECRET_WORDS = ("key", "secret", "password", "token", "auth")

ENV_FILES = {
    "production": ".env.production",
    "development": ".env",
}


class EnvironmentHelper:
    """Resolves which dotenv file applies and loads it before settings are read."""

    def __init__(self):
        self.environment = os.getenv("TABLESYNC_ENVIRONMENT", "development").lower()
        self.env_file = self._resolve_env_file()
        loaded = load_dotenv(dotenv_path=self.env_file)
        if os.getenv("TABLESYNC_DEBUG_ENV"):
            self._debug_environment(loaded)

    def _resolve_env_file(self) -> str:
        """An explicit TABLESYNC_ENV_FILE wins; otherwise pick by environment name."""
        explicit = os.getenv("TABLESYNC_ENV_FILE")
        if explicit:
            return explicit
        return ENV_FILES.get(self.environment, ".env")

    def _debug_environment(self, loaded: bool):
        logger.debug("=== TABLESYNC ENVIRONMENT ===")
        logger.debug("Environment: {} (env file {}, loaded={})", self.environment, self.env_file, loaded)
        for key in sorted(k for k in os.environ if k.startswith("TABLESYNC_")):
            value = os.environ[key]
            if any(word in key.lower() for word in SECRET_WORDS):
                value = "*" * len(value)
            logger.debug("{}={}", key, value)

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return os.getenv(key, default)

    @property
    def data_dir(self) -> Optional[str]:
        """Directory holding the local database when no explicit URL is configured."""
        value = self.get("TABLESYNC_DATA_DIR")
        return value.rstrip("/") if value else None

    @property
    def has_explicit_database_url(self) -> bool:
        return bool(self.get("TABLESYNC_DATABASE_URL"))


env = EnvironmentHelper()
