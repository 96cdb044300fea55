import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from rotativos.core.config import settings
from rotativos.core.errors import RotativosError
from rotativos.core.logging import configure_logging
from rotativos.db.init_db import init_db
from rotativos.api.routes.auth import router as auth_router
from rotativos.api.routes.me import router as me_router
from rotativos.api.routes.solicitudes import router as solicitudes_router
from rotativos.api.routes.bloques import router as bloques_router
from rotativos.api.routes.licencias import router as licencias_router
from rotativos.api.routes.reglas import router as reglas_router
from rotativos.api.routes.temporada import router as temporada_router
from rotativos.api.routes.admin_users import router as admin_users_router

logger = logging.getLogger(__name__)

configure_logging()

app = FastAPI(title="Rotativos")
app.include_router(me_router)
app.include_router(solicitudes_router)
app.include_router(bloques_router)
app.include_router(licencias_router)
app.include_router(reglas_router)
app.include_router(temporada_router)
app.include_router(admin_users_router)


@app.exception_handler(RotativosError)
def rotativos_error_handler(request: Request, exc: RotativosError):
    if exc.status_code >= 500:
        logger.error("%s %s -> %s", request.method, request.url.path, exc.message)
    else:
        logger.info("%s %s -> %s %s", request.method, request.url.path, exc.status_code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.on_event("startup")
def on_startup():
    init_db()

app.include_router(auth_router)

@app.get("/health")
def health():
    return {"ok": True, "db": settings.DATABASE_URL}
