import os
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class AppConfig:
    data_dir: Path
    admin_secret: str
    storage_backend: str = "local"
    gcs_bucket: str = "creation-rights-app"
    gcs_key_file: str | None = None
    stripe_secret_key: str | None = None
    max_upload_bytes: int = 50 * 1024 * 1024
    retry_attempts: int = 3
    retry_base_delay: float = 0.2
    log_level: str = "INFO"

    @property
    def blobs_dir(self) -> Path:
        return self.data_dir / "blobs"


def load_config() -> AppConfig:
    env = os.environ
    return AppConfig(
        data_dir=Path(env.get("CR_DATA_DIR", "data")),
        admin_secret=env.get("CR_ADMIN_SECRET", "dev-secret"),
        storage_backend=env.get("CR_STORAGE_BACKEND", "local").lower(),
        gcs_bucket=env.get("GCS_BUCKET_NAME", "creation-rights-app"),
        gcs_key_file=env.get("GCS_KEY_FILE") or None,
        stripe_secret_key=env.get("STRIPE_SECRET_KEY") or None,
        max_upload_bytes=int(env.get("CR_MAX_UPLOAD_BYTES", str(50 * 1024 * 1024))),
        retry_attempts=int(env.get("CR_RETRY_ATTEMPTS", "3")),
        retry_base_delay=float(env.get("CR_RETRY_BASE_DELAY", "0.2")),
        log_level=env.get("CR_LOG_LEVEL", "INFO").upper(),
    )
