from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from config import logger
from crud import ensure_bootstrap_admin
from database import Base, SessionLocal, engine
from errors import PortalError
from routes import admin, affiliate, auth, referral
from site_config import SiteConfig, seed_defaults

app = FastAPI(title="Affiliate Portal API")
app.state.site_config = SiteConfig()

@app.exception_handler(PortalError)
async def portal_error_handler(request: Request, exc: PortalError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"kind": exc.kind, "detail": exc.detail},
        headers=exc.headers,
    )

@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.exception(f"[main] database error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content={"kind": "ServerError", "detail": "Internal server error"},
    )

@app.on_event("startup")
def on_startup():
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        seed_defaults(db)
        ensure_bootstrap_admin(db)
        app.state.site_config.reload(db)
    finally:
        db.close()

app.include_router(auth.router)
app.include_router(affiliate.router)
app.include_router(admin.router)
app.include_router(referral.router)

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
