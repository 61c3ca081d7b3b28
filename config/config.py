import os
from dotenv import load_dotenv
from pathlib import Path
from enum import Enum

class RefreshScope(Enum):
    """Which registry snapshot a refresh pulls from the scraping service."""
    ALL = "all"
    READY = "ready"

class Config:
    """Configuration management for the scrape orchestration service."""

    def __init__(self):
        """Initialize configuration with environment variables."""
        # Load environment variables from .env file if it exists
        env_path = Path(__file__).parent.parent / '.env'
        if env_path.exists():
            load_dotenv(dotenv_path=env_path)

        # Scraping service connection
        self.SCRAPING_API_URL = os.getenv('SCRAPING_API_URL', 'http://localhost:3000').rstrip('/')
        self.SCRAPING_API_TOKEN = os.getenv('SCRAPING_API_TOKEN')
        self.REQUEST_TIMEOUT_S = float(os.getenv('SCRAPING_REQUEST_TIMEOUT_S', '100'))

        # Orchestration tuning
        self.RESET_SETTLE_DELAY_S = float(os.getenv('RESET_SETTLE_DELAY_S', '0.3'))
        self.BATCH_DISCOVERY_MAX_LIMIT = int(os.getenv('BATCH_DISCOVERY_MAX_LIMIT', '100'))
        self.REGISTRY_FETCH_LIMIT = int(os.getenv('REGISTRY_FETCH_LIMIT', '500'))
        self.DEFAULT_PAGE_SIZE = int(os.getenv('DEFAULT_PAGE_SIZE', '15'))
        self.REFRESH_SCOPE = os.getenv('REGISTRY_REFRESH_SCOPE', RefreshScope.ALL.value).lower()

        # Upload cohort the registry tracks when the server starts
        upload_id = os.getenv('UPLOAD_ID')
        self.UPLOAD_ID = int(upload_id) if upload_id and upload_id.isdigit() else None

    def validate(self) -> bool:
        """
        Validate that the configuration is usable.

        Returns:
            bool: True if configuration is valid, False otherwise
        """
        if not self.SCRAPING_API_URL.startswith(('http://', 'https://')):
            print(f"Error: SCRAPING_API_URL '{self.SCRAPING_API_URL}' must be an http(s) URL.")
            return False
        if self.REQUEST_TIMEOUT_S <= 0:
            print("Error: SCRAPING_REQUEST_TIMEOUT_S must be positive.")
            return False
        if self.BATCH_DISCOVERY_MAX_LIMIT < 1:
            print("Error: BATCH_DISCOVERY_MAX_LIMIT must be at least 1.")
            return False
        if self.REFRESH_SCOPE not in {s.value for s in RefreshScope}:
            print(f"Error: Unknown REGISTRY_REFRESH_SCOPE '{self.REFRESH_SCOPE}'. Must be one of: {', '.join([s.value for s in RefreshScope])}")
            return False

        return True

    def get_service_info(self) -> str:
        """
        Get a short description of the configured scraping service.

        Returns:
            str: Formatted string with service information
        """
        auth = "token" if self.SCRAPING_API_TOKEN else "no token"
        return f"Scraping service at {self.SCRAPING_API_URL} ({auth}, timeout {self.REQUEST_TIMEOUT_S:g}s)"
