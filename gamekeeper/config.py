import os


def _env_bool(name, default):
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


class Config:
    """Base configuration."""
    SECRET_KEY = os.getenv('SECRET_KEY', 'your-default-secret-key-for-dev')

    # --- Database Configuration ---
    SQLALCHEMY_DATABASE_URI = os.getenv('DATABASE_URL', 'sqlite:///gamekeeper.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # --- Paths ---
    # Read from environment variables, with the Docker paths as defaults.
    DOWNLOADS_PATH = os.getenv('DOWNLOADS_PATH', '/games/_downloads')
    LIBRARY_PATH = os.getenv('LIBRARY_PATH', '/games')

    # --- Grab / Download Settings ---
    DOWNLOAD_CATEGORY = os.getenv('DOWNLOAD_CATEGORY', 'gamekeeper')
    DRY_RUN = _env_bool('DRY_RUN', False)
    RECONCILE_INTERVAL_SECONDS = int(os.getenv('RECONCILE_INTERVAL_SECONDS', '30'))
    RECONCILE_MISSING_THRESHOLD = int(os.getenv('RECONCILE_MISSING_THRESHOLD', '3'))

    # --- Update Checks ---
    UPDATE_CHECK_ENABLED = _env_bool('UPDATE_CHECK_ENABLED', True)
    UPDATE_CHECK_SCHEDULE = os.getenv('UPDATE_CHECK_SCHEDULE', 'daily')
    LIBRARY_SCAN_HOURS = int(os.getenv('LIBRARY_SCAN_HOURS', '12'))

    # --- External Services ---
    HTTP_TIMEOUT = float(os.getenv('HTTP_TIMEOUT', '15'))
    JACKETT_URL = os.getenv('JACKETT_URL')
    JACKETT_API_KEY = os.getenv('JACKETT_API_KEY')
    JACKETT_INDEXERS = os.getenv('JACKETT_INDEXERS', 'all')
    JACKETT_CATEGORIES = os.getenv('JACKETT_CATEGORIES', '4050')
    QBITTORRENT_HOST = os.getenv('QBITTORRENT_HOST')
    QBITTORRENT_PORT = os.getenv('QBITTORRENT_PORT', '8080')
    QBITTORRENT_USER = os.getenv('QBITTORRENT_USER')
    QBITTORRENT_PASS = os.getenv('QBITTORRENT_PASS')
    QBITTORRENT_TIMEOUT = float(os.getenv('QBITTORRENT_TIMEOUT', '10'))
    TWITCH_CLIENT_ID = os.getenv('TWITCH_CLIENT_ID')
    TWITCH_CLIENT_SECRET = os.getenv('TWITCH_CLIENT_SECRET')
    DISCORD_WEBHOOK_URL = os.getenv('DISCORD_WEBHOOK_URL')

    SCHEDULER_ENABLED = _env_bool('SCHEDULER_ENABLED', True)


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SCHEDULER_ENABLED = False
    DRY_RUN = False
    DISCORD_WEBHOOK_URL = None
