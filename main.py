import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from pymongo.errors import PyMongoError

import auth
import companies
import countries
import dashboard
import people
import users
from config import get_settings
from database import Database, connect, get_db
from errors import register_exception_handlers
from logging_config import configure_logging

logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.LOG_LEVEL)
    app.state.db = connect(settings)
    try:
        yield
    finally:
        app.state.db.close()
        app.state.db = None
        logger.info("MongoDB connection closed")


app = FastAPI(title="Global Tracker API", lifespan=lifespan)


def _allowed_origins():
    if not settings.FRONTEND_ORIGIN:
        return ["*"]
    return [o.strip() for o in settings.FRONTEND_ORIGIN.split(",") if o.strip()]


app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

for module in (auth, countries, companies, people, users, dashboard):
    app.include_router(module.router, prefix=settings.API_PREFIX)

app.mount("/uploads", StaticFiles(directory=settings.FILE_UPLOAD_PATH, check_dir=False), name="uploads")


@app.get("/")
def read_root():
    return {"message": "Global Tracker API running"}


@app.get("/test")
def test_database(db: Database = Depends(get_db)):
    response = {
        "backend": "✅ Running",
        "database": "✅ Available",
        "database_url": "✅ Set" if settings.DATABASE_URL else "❌ Not Set",
        "database_name": db.name,
        "connection_status": "Connected",
        "transactions": db.transactions,
        "collections": [],
    }
    try:
        collections = db.list_collection_names()
        response["collections"] = collections[:10]
        response["database"] = "✅ Connected & Working"
    except PyMongoError as e:
        response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"
        response["connection_status"] = "Not Connected"
    return response


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.PORT)
