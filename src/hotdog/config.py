import os

from dotenv import load_dotenv

load_dotenv()

# --- Watch engine ---
PROBE_DELAY_SECONDS = float(os.getenv("HOTDOG_PROBE_DELAY", "2.5"))
PROBE_TIMEOUT_SECONDS = float(os.getenv("HOTDOG_PROBE_TIMEOUT", "5"))
PROBE_RETRY_LIMIT = int(os.getenv("HOTDOG_PROBE_RETRIES", "3"))
PROBE_MAX_BACKOFF_SECONDS = 30.0

# --- Browser ---
REMOTE_DEBUG_PORT = int(os.getenv("HOTDOG_DEBUG_PORT", "9222"))
TAB_CHECK_INTERVAL_SECONDS = float(os.getenv("HOTDOG_TAB_CHECK_INTERVAL", "2.0"))

# --- HTTP surface ---
FASTAPI_HOST = os.getenv("HOTDOG_HOST", "127.0.0.1")
FASTAPI_PORT = int(os.getenv("HOTDOG_PORT", "8035"))
