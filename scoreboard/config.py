import os
from dotenv import load_dotenv

load_dotenv()

class Config:
    """Scoring ledger configuration settings"""

    # Database settings
    DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///scoreboard.db')

    # Runtime settings
    DEBUG = os.getenv('DEBUG', 'False').lower() == 'true'
    LOG_DIR = os.getenv('LOG_DIR', 'logs')

    # Elo calculation settings
    STARTING_ELO = 1200
    K_FACTOR_PROVISIONAL = 40  # First 10 matches
    K_FACTOR_STANDARD = 32     # All subsequent matches
    PROVISIONAL_MATCH_COUNT = 10
    ELO_SCALE = 400

    @classmethod
    def get_async_database_url(cls) -> str:
        """Return DATABASE_URL rewritten for the async sqlite driver if needed"""
        database_url = cls.DATABASE_URL
        if database_url.startswith('sqlite:///'):
            database_url = database_url.replace('sqlite:///', 'sqlite+aiosqlite:///')
        return database_url

    @classmethod
    def validate(cls):
        """Validate that required configuration is present"""
        if not cls.DATABASE_URL:
            raise ValueError("DATABASE_URL is required")
