import os
from dotenv import load_dotenv

load_dotenv()

class Config:
    """GitRank configuration settings"""

    # Database settings
    DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///gitrank.db')

    # Runtime settings
    DEBUG = os.getenv('DEBUG', 'False').lower() == 'true'
    LOG_DIR = os.getenv('LOG_DIR', 'logs')

    # GitHub settings
    GITHUB_TOKEN = os.getenv('GITHUB_TOKEN')
    GITHUB_GRAPHQL_URL = os.getenv('GITHUB_GRAPHQL_URL', 'https://api.github.com/graphql')
    GITHUB_TIMEOUT = float(os.getenv('GITHUB_TIMEOUT', 15))
    MAX_MERGED_PR_PAGES = int(os.getenv('MAX_MERGED_PR_PAGES', 5))   # 100 merges per page
    MAX_REPOSITORY_PAGES = int(os.getenv('MAX_REPOSITORY_PAGES', 10))

    # Sync settings
    CRON_SECRET = os.getenv('CRON_SECRET')
    SYNC_CHUNK_SIZE = int(os.getenv('SYNC_CHUNK_SIZE', 50))

    # Battle settings
    MATCHUP_TOKEN_SECRET = os.getenv('MATCHUP_TOKEN_SECRET', 'dev-matchup-secret-change-me-in-production')
    MATCHUP_TOKEN_TTL = int(os.getenv('MATCHUP_TOKEN_TTL', 600))  # seconds

    # Elo calculation settings
    ELO_BASELINE = int(os.getenv('ELO_BASELINE', 1200))
    ELO_K_FACTOR = int(os.getenv('ELO_K_FACTOR', 32))

    @classmethod
    def get_async_database_url(cls) -> str:
        """Get the database URL with an async driver"""
        database_url = cls.DATABASE_URL
        if database_url.startswith('sqlite:///'):
            database_url = database_url.replace('sqlite:///', 'sqlite+aiosqlite:///')
        return database_url

    @classmethod
    def validate(cls, require_github: bool = True):
        """Validate that required configuration is present"""
        if require_github and not cls.GITHUB_TOKEN:
            raise ValueError("GITHUB_TOKEN is required")
        if cls.SYNC_CHUNK_SIZE < 1:
            raise ValueError("SYNC_CHUNK_SIZE must be a positive integer")
