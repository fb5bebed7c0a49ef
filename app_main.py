"""Application entry point for the ClassCheck check-in service."""

from __future__ import annotations

import os

from checkin_app.constants.about import APP_NAME
from checkin_app.constants.checkin_constants import DEFAULT_STORE_BACKEND, STORE_BACKEND_ENV
from checkin_app.constants.network_constants import DEFAULT_HOST, DEFAULT_PORT
from checkin_app.core.checkin_manager import CheckinManager
from checkin_app.core.store import DocumentStore, InMemoryDocumentStore
from checkin_app.server.api_server import start_api_server
from checkin_app.utils.logging_config import configure_logging


def build_store(backend: str | None = None) -> DocumentStore:
    """Create the document store selected by ``CHECKIN_STORE``."""
    choice = (backend or os.getenv(STORE_BACKEND_ENV, DEFAULT_STORE_BACKEND)).strip().lower()
    if choice == "memory":
        return InMemoryDocumentStore()
    if choice == "firestore":
        # Imported lazily so the in-memory backend runs without Google credentials.
        from checkin_app.core.store.firestore_store import FirestoreDocumentStore

        return FirestoreDocumentStore(project=os.getenv("GOOGLE_CLOUD_PROJECT"))
    raise ValueError(f"Unknown {STORE_BACKEND_ENV} backend: {choice!r}")


def main() -> None:
    """Initialize logging, build the store and serve the API until interrupted."""
    logger = configure_logging()
    logger.info("Starting %s…", APP_NAME)

    store = build_store()
    checkin_manager = CheckinManager(store)
    host = os.getenv("CHECKIN_HOST", DEFAULT_HOST)
    port = int(os.getenv("CHECKIN_PORT", str(DEFAULT_PORT)))
    server_thread = start_api_server(checkin_manager=checkin_manager, host=host, port=port)
    logger.info("API available at http://%s:%d/ using the %s store", host, port, type(store).__name__)

    try:
        server_thread.join()
    except KeyboardInterrupt:
        logger.info("Shutting down %s", APP_NAME)
    finally:
        checkin_manager.shutdown()


if __name__ == "__main__":
    main()
