from fastapi import FastAPI

from royale.api.endpoints import matches as match_endpoints
from royale.api.endpoints import registrations as registration_endpoints
from royale.api.endpoints import tournaments as tournament_endpoints
from royale.core.database import init_db
from royale.core.log import configure_logging

app = FastAPI(title="Battle Royale Standings API")

app.include_router(tournament_endpoints.router, prefix="/tournaments", tags=["Tournaments"])
app.include_router(registration_endpoints.router, prefix="/registrations", tags=["Registrations"])
app.include_router(match_endpoints.router, prefix="/matches", tags=["Matches"])


@app.on_event("startup")
async def startup_event():
    configure_logging()
    init_db()


@app.get("/health")
async def health():
    return {"status": "ok"}
