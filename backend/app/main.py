import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.routes import creation, matches, tournaments
from app.runtime import get_runtime

app = FastAPI(title="Bracket Engine API")

_cors_origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]
_extra = os.getenv("CORS_ORIGINS", "")
if _extra:
    _cors_origins.extend(o.strip() for o in _extra.split(",") if o.strip())

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(tournaments.router, prefix="/api", tags=["tournaments"])
app.include_router(matches.router, prefix="/api", tags=["matches"])
app.include_router(creation.router, prefix="/api", tags=["creation"])


def _runtime():
    # Honour dependency overrides so tests never touch the production engine
    return app.dependency_overrides.get(get_runtime, get_runtime)()


@app.on_event("startup")
def on_startup():
    # Creates tables, re-arms registration/start timers from persisted timestamps
    _runtime().start()


@app.on_event("shutdown")
def on_shutdown():
    _runtime().stop()


@app.get("/api/health")
def health_check():
    return {"app_name": "Bracket Engine API", "status": "healthy"}
