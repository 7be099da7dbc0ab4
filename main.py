import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import Settings
from database import engine, Base
from coach_engine import models  # noqa: F401  registers the tables
from coach_engine.router import router as coach_router

logging.basicConfig(
    level=getattr(logging, Settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Create tables if missing
Base.metadata.create_all(bind=engine)

app = FastAPI(
    title="Coach Orchestration Service",
    description="Intent routing, model selection, dialogue state and telemetry for the AI coach.",
    version="1.0.0"
)

# CORS (frontend)
# In production restrict allow_origins to the frontend domain.
origins = [
    "http://localhost",
    "http://localhost:3000",
    "http://localhost:8080",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(coach_router)

@app.get("/")
async def health_check():
    """
    Health check
    """
    return {
        "status": "healthy",
        "service": "Coach Orchestration Service",
        "version": "1.0.0"
    }

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
