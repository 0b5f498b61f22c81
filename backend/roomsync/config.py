import os

from dotenv import load_dotenv

# Load variables from a .env file into the process environment if present
load_dotenv()

DEFAULT_SYNC_INTERVAL = 2.0 # seconds


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Settings:
    """Runtime configuration, read from the environment when instantiated."""

    def __init__(self):
        # Comma-separated list of CORS origins; '*' means allow all
        self.allowed_origins = [o.strip() for o in os.getenv("ALLOWED_ORIGINS", "*").split(",") if o.strip()] or ["*"]

        # Shared secret that makes a joining client the room owner; empty means nobody is owner
        self.owner_secret = os.getenv("OWNER_SECRET", "")
        # Ownerless mode: every connection may control playback
        self.open_control = _flag("OPEN_CONTROL")
        # Whether new rooms start with control delegated to everyone
        self.public_control_default = _flag("PUBLIC_CONTROL_DEFAULT")

        self.upload_dir = os.getenv("UPLOAD_DIR", os.path.join(os.getcwd(), "uploads"))
        self.upload_url_prefix = os.getenv("UPLOAD_URL_PREFIX", "/uploads")
        self.max_upload_bytes = int(os.getenv("MAX_UPLOAD_BYTES", str(20 * 1024 * 1024)))

        # Seconds between server drift broadcasts for a playing room; 0 disables them
        self.sync_interval = float(os.getenv("SYNC_INTERVAL_SECONDS", str(DEFAULT_SYNC_INTERVAL)))

        self.log_level = os.getenv("LOG_LEVEL", "INFO").upper()
        self.host = os.getenv("HOST", "0.0.0.0")
        self.port = int(os.getenv("PORT", "3000"))
