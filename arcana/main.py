from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from arcana.config import get_settings
from arcana.deck import DECK_SIZE, get_cards, get_spread, get_spreads
from arcana.errors import DeckError, DeckUnavailable
from arcana.log_config import configure_logging
from arcana.routes.reading_routes import history_router
from arcana.routes.reading_routes import router as reading_router

settings = get_settings()
configure_logging(settings.log_level, settings.log_json)

app = FastAPI(title="Arcana Reading Service", version="0.2.0")

app.include_router(reading_router)
app.include_router(history_router)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
def health():
    return {"ok": True, "ai_configured": bool(settings.openai_api_key), "entropy": settings.entropy}


@app.get("/deck")
def deck():
    try:
        cards = get_cards()
    except DeckUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))
    return {"size": DECK_SIZE, "cards": [c.model_dump() for c in cards]}


@app.get("/spreads")
def spreads():
    return [s.model_dump() for s in get_spreads()]


@app.get("/spreads/{spread_id}")
def spread(spread_id: str):
    try:
        return get_spread(spread_id).model_dump()
    except DeckError:
        raise HTTPException(status_code=404, detail=f"Unknown spread_id: {spread_id}")
