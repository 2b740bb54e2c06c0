"""
Auth Gate: forward-auth middleware for a reverse proxy (e.g. Traefik ForwardAuth).
Gate check on every path, one-time code challenge under /_auth_code, in-memory sessions.
Port 8080 by default.
"""
import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from auth_gate.config import Settings
from auth_gate.flow import AuthFlow
from auth_gate.notifiers import Notifier, build_notifier
from auth_gate.routes import build_auth_router, gate_router
from auth_gate.store import Store

logger = logging.getLogger(__name__)


async def sweep_periodically(store: Store, interval: float) -> None:
    """Purge expired codes and sessions every interval seconds until cancelled."""
    while True:
        await asyncio.sleep(interval)
        try:
            store.sweep_expired()
        except Exception:
            logger.exception("Expired entry sweep failed")


def create_app(
    settings: Settings | None = None,
    store: Store | None = None,
    notifier: Notifier | None = None,
) -> FastAPI:
    """Build the app around one Store and one Notifier, both living for the process lifetime."""
    settings = settings or Settings.from_env()
    store = store or Store()
    notifier = notifier or build_notifier(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Log configuration warnings and run the expiry sweep for the app's lifetime."""
        for warning in settings.warnings():
            logger.warning(warning)
        sweeper = asyncio.create_task(sweep_periodically(store, settings.cleanup_interval))
        try:
            yield
        finally:
            sweeper.cancel()
            try:
                await sweeper
            except asyncio.CancelledError:
                pass

    app = FastAPI(title="Auth Gate", version="1.0.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store
    app.state.flow = AuthFlow(store, notifier, settings)

    @app.get("/health")
    def health():
        """Health check endpoint."""
        return {"status": "ok", "service": "auth_gate"}

    app.include_router(build_auth_router(settings.path_prefix), tags=["challenge"])
    # Catch-all gate last so it never shadows the routes above
    app.include_router(gate_router, tags=["gate"])
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    uvicorn.run(
        "auth_gate.main:app",
        host=app.state.settings.host,
        port=app.state.settings.port,
    )
