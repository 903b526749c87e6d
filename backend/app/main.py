import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from starlette.middleware.trustedhost import TrustedHostMiddleware

from app.routers import admin, auth, catalog, dependants, dispatchers, media, notifications, requests, streams
from app.services.lifecycle import request_lifecycle
from app.services.media_store import LocalMediaBackend, media_store
from app.services.push_sender import push_sender
from app.services.reassurance import reassurance_writer

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="Wasil API", version="0.1.0")


def _parse_csv_env(name: str, default: str) -> list[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


cors_origins = _parse_csv_env("CORS_ORIGINS", "*")
allow_any_origin = len(cors_origins) == 1 and cors_origins[0] == "*"

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    # Browsers reject wildcard CORS with credentials enabled.
    allow_credentials=not allow_any_origin,
    allow_methods=["*"],
    allow_headers=["*"],
)

trusted_hosts = _parse_csv_env("TRUSTED_HOSTS", "*")
if not (len(trusted_hosts) == 1 and trusted_hosts[0] == "*"):
    app.add_middleware(TrustedHostMiddleware, allowed_hosts=trusted_hosts)

app.include_router(auth.router)
app.include_router(catalog.router)
app.include_router(dependants.router)
app.include_router(requests.router)
app.include_router(dispatchers.router)
app.include_router(admin.router)
app.include_router(notifications.router)
app.include_router(streams.router)
app.include_router(media.router)

if isinstance(media_store.backend, LocalMediaBackend):
    app.mount(
        media_store.backend.public_prefix,
        StaticFiles(directory=media_store.backend.root),
        name="media",
    )


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/ready")
def ready():
    llm_configured = bool(reassurance_writer.llm_available)
    return {
        "status": "ready",
        "llm_configured": llm_configured,
        "llm_mode": "openai" if llm_configured else "fallback",
        "assignment_policy": request_lifecycle.policy.name,
        "push_enabled": push_sender.enabled,
        "media_backend": media_store.backend.name,
    }
