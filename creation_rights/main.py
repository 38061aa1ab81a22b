import logging

from fastapi import FastAPI

from creation_rights.config import AppConfig, load_config
from creation_rights.features.chat.api import router as chat_router
from creation_rights.features.ledger.api import router as ledger_router
from creation_rights.features.profiles.api import router as profiles_router
from creation_rights.features.uploads.api import router as uploads_router
from creation_rights.infra.gcs import GcsBlobStore
from creation_rights.infra.payments import PaymentProcessor, StripePaymentProcessor, UnconfiguredPaymentProcessor
from creation_rights.infra.replication import ReplicationQueue
from creation_rights.infra.retry import RetryingBlobStore
from creation_rights.infra.storage import BlobStore, LocalBlobStore
from creation_rights.web.health import router as health_router

logger = logging.getLogger(__name__)


def build_blob_store(cfg: AppConfig) -> BlobStore:
    if cfg.storage_backend == "gcs":
        inner: BlobStore = GcsBlobStore(cfg.gcs_bucket, key_file=cfg.gcs_key_file)
    else:
        inner = LocalBlobStore(cfg.blobs_dir)
    return RetryingBlobStore(inner, attempts=cfg.retry_attempts, base_delay=cfg.retry_base_delay)


def build_payment_processor(cfg: AppConfig) -> PaymentProcessor:
    if cfg.stripe_secret_key:
        return StripePaymentProcessor(
            cfg.stripe_secret_key, attempts=cfg.retry_attempts, base_delay=cfg.retry_base_delay
        )
    logger.warning("STRIPE_SECRET_KEY is not set; license purchases cannot be confirmed")
    return UnconfiguredPaymentProcessor()


def create_app(
    cfg: AppConfig | None = None,
    blobs: BlobStore | None = None,
    payments: PaymentProcessor | None = None,
) -> FastAPI:
    cfg = cfg or load_config()
    logging.basicConfig(level=cfg.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    blobs = blobs or build_blob_store(cfg)
    app = FastAPI(title="Creation Rights Storage Fabric", version="0.1.0")
    app.state.cfg = cfg
    app.state.blobs = blobs
    app.state.payments = payments or build_payment_processor(cfg)
    app.state.queue = ReplicationQueue(blobs)
    app.include_router(health_router)
    app.include_router(profiles_router)
    app.include_router(ledger_router)
    app.include_router(uploads_router)
    app.include_router(chat_router)
    logger.info("storage fabric ready (backend=%s)", cfg.storage_backend)
    return app


app = create_app()
