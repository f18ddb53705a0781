import os
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parents[1]

load_dotenv(BASE_DIR / ".env")

# Remote generation service
MIDJOURNEY_API_BASE_URL = os.getenv("MIDJOURNEY_API_BASE_URL", "").rstrip("/")
MIDJOURNEY_API_KEY = os.getenv("MIDJOURNEY_API_KEY", "")
MIDJOURNEY_PROCESS_MODE = os.getenv("MIDJOURNEY_PROCESS_MODE", "relax")
REMOTE_TIMEOUT_SECONDS = float(os.getenv("REMOTE_TIMEOUT_SECONDS", "30"))

# In-memory job registry
JOB_MAX_AGE_HOURS = float(os.getenv("JOB_MAX_AGE_HOURS", "24"))
JOB_SWEEP_INTERVAL_SECONDS = float(os.getenv("JOB_SWEEP_INTERVAL_SECONDS", "3600"))

# History storage mode: local / gcp / azure
STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "local")
GCS_BUCKET = os.getenv("GCS_BUCKET")
AZURE_CONN_STR = os.getenv("AZURE_STORAGE_CONNECTION_STRING")
AZURE_CONTAINER = os.getenv("AZURE_CONTAINER")

LOCAL_HISTORY_FILE = BASE_DIR / "data" / "history.json"

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Ensure the history file exists (for local mode)
if STORAGE_BACKEND == "local":
    LOCAL_HISTORY_FILE.parent.mkdir(parents=True, exist_ok=True)
    if not LOCAL_HISTORY_FILE.exists():
        LOCAL_HISTORY_FILE.write_text("[]")
