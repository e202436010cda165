# aiclient/constants.py

APP_NAME = "aiclient"
__version__ = "1.2.0"
DEFAULT_LOG_FILENAME = "aiclient.log"
DEFAULT_LOG_MAX_BYTES = 10 * 1024 * 1024  # 10 MB
DEFAULT_LOG_BACKUP_COUNT = 5

# --- request shaping ---
HISTORY_WINDOW = 20
CODE_TEMPERATURE = 0.3

# --- retry (429 only) ---
MAX_RETRIES = 3
BASE_DELAY = 2.0  # seconds, multiplied by attempt number

# --- transport timeouts (seconds) ---
CONNECT_TIMEOUT = 30.0
WRITE_TIMEOUT = 30.0
READ_TIMEOUT = 120.0

# --- secrets ---
KEYRING_SERVICE = "aiclient"
KEYRING_API_KEY_ACCOUNT = "api_key"
API_KEY_ENV_VARS = ("AICLIENT_API_KEY", "OPENAI_API_KEY")
