import json
import os
from pathlib import Path
from typing import Dict, List, Optional

from dotenv import load_dotenv

load_dotenv()


def _json_env(name: str, default):
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, ValueError):
        return default


class Settings:
    """Upload client and control-plane settings"""

    def __init__(self):
        self.log_level: str = os.getenv("LOG_LEVEL", "INFO")

        # Client
        self.control_plane_url: str = os.getenv(
            "CONTROL_PLANE_URL", "http://localhost:8000/functions/v1/multipart-upload"
        )
        self.upload_state_dir: Path = Path(
            os.getenv("UPLOAD_STATE_DIR", "~/.chunked_upload/upload_states")
        ).expanduser()
        self.http_timeout_seconds: float = float(os.getenv("HTTP_TIMEOUT_SECONDS", "60"))
        self.cleanup_interval_seconds: int = int(os.getenv("CLEANUP_INTERVAL_SECONDS", str(6 * 60 * 60)))
        self.session_store: str = os.getenv("SESSION_STORE", "file").lower()

        # Redis session store
        self.redis_host: str = os.getenv("REDIS_HOST", "redis")
        self.redis_port: int = int(os.getenv("REDIS_PORT", "6379"))
        self.redis_password: str = os.getenv("REDIS_PASSWORD", "")
        self.redis_db: int = int(os.getenv("REDIS_DB", "0"))

        # Control-plane server
        self.bucket_name: Optional[str] = os.getenv("BUCKET_NAME")
        self.s3_endpoint_url: Optional[str] = os.getenv("S3_ENDPOINT_URL")
        self.aws_access_key: Optional[str] = os.getenv("AWS_ACCESS_KEY")
        self.aws_secret_key: Optional[str] = os.getenv("AWS_SECRET_KEY")
        self.aws_region: str = os.getenv("AWS_REGION", "auto")
        self.presigned_url_expiration: int = int(os.getenv("PRESIGNED_URL_EXPIRATION", str(15 * 60)))
        self.control_plane_tokens: Dict[str, str] = _json_env("CONTROL_PLANE_TOKENS", {})
        cors = _json_env("CORS_ORIGINS", ["*"])
        self.cors_origins: List[str] = cors if isinstance(cors, list) else ["*"]


settings = Settings()
