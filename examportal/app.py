from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi import Depends

from .routers import auth, exam_routers, invitation_routers, student_routers, result_routers
from contextlib import asynccontextmanager
from .config import CORS_ORIGINS, LOG_LEVEL
from .db import create_db_and_tables
from .errors import ExamError
from .security import auth_backend, app_users
from .dependencies import users_router_permission
from .schemas.user_schema import UserCreate, UserRead, UserUpdate

import logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # run once when app starts. Make DB tables.
    logging.basicConfig(level=LOG_LEVEL)
    await create_db_and_tables()
    yield

app = FastAPI(lifespan=lifespan)


app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,  # which sites can call this API
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ExamError)
async def exam_error_handler(request: Request, err: ExamError):
    return JSONResponse(status_code=err.status_code, content=err.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, err: RequestValidationError):
    # malformed payloads are validation failures like any other: 400, same body shape
    errors = jsonable_encoder(err.errors())
    first = errors[0] if errors else {}
    location = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = f"{location}: {first.get('msg')}" if location else first.get("msg", "Invalid request")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": message, "code": "VALIDATION_ERROR", "errors": errors},
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, err: Exception):
    # never echo datastore errors to the client
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error", "code": "INTERNAL_ERROR"})


# Attach users router with small permission check. This router provides /users and /users/me
app.include_router(
    app_users.get_users_router(UserRead, UserUpdate),
    prefix="/users",
    tags=["users"],
    dependencies=[Depends(users_router_permission)],
)


app.include_router(exam_routers.router, prefix="/api")
app.include_router(invitation_routers.router, prefix="/api")
app.include_router(student_routers.router, prefix="/api", tags=["Student"])
app.include_router(result_routers.router, prefix="/api")

# Auth routers
app.include_router(app_users.get_auth_router(auth_backend), prefix="/auth/jwt", tags=["auth"])
app.include_router(auth.router)
app.include_router(app_users.get_register_router(UserRead, UserCreate), prefix="/auth", tags=["auth"])
