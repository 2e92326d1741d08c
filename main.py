import logging
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo import MongoClient
from pymongo.errors import DuplicateKeyError
from starlette.exceptions import HTTPException as StarletteHTTPException

import authorities
import community
import drives
import reports
import stats
import votes
from database import USER, Store, create_store, get_store, serialize
from errors import CivicError, Forbidden, NotFound, Unauthorized
from schemas import LoginRequest, RegisterRequest, User as UserSchema
from security import create_token, hash_password, require_user, verify_password
from settings import Settings

logger = logging.getLogger(__name__)

REGISTERABLE_ROLES = ("user", "volunteer", "municipal")


# ---------- Error handlers ----------

def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def handle_civic_error(request: Request, exc: CivicError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return _error(exc.status_code, exc.message)


def handle_http_error(request: Request, exc: StarletteHTTPException):
    return _error(exc.status_code, str(exc.detail))


def handle_validation_error(request: Request, exc: RequestValidationError):
    problems = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
        problems.append(f"{location}: {err.get('msg')}" if location else err.get("msg", "Invalid input"))
    return _error(400, "; ".join(problems) or "Invalid request body")


def handle_duplicate_key(request: Request, exc: DuplicateKeyError):
    logger.warning("Duplicate key on %s %s", request.method, request.url.path)
    return _error(409, "Resource already exists")


def handle_unexpected(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _error(500, "Internal server error")


# ---------- Basic & auth routes ----------

router = APIRouter()


@router.get("/")
def root(request: Request):
    return {"message": f"{request.app.state.settings.app_name} running"}


@router.get("/test")
def test_database(store: Store = Depends(get_store)):
    info = {
        "backend": "running",
        "database": "disconnected",
        "collections": [],
    }
    try:
        info["collections"] = store.db.list_collection_names()[:10]
        info["database"] = "connected"
    except Exception as e:
        info["database"] = f"error: {str(e)[:80]}"
    return info


@router.post("/api/auth/register")
def register(req: RegisterRequest, request: Request, store: Store = Depends(get_store)):
    existing = store[USER].find_one({"email": req.email})
    if existing:
        raise HTTPException(status_code=400, detail="Email already registered")

    user_doc = UserSchema(
        name=req.name,
        email=req.email,
        role=req.role if req.role in REGISTERABLE_ROLES else "user",
        password_hash=hash_password(req.password),
    ).model_dump()
    user = store.create_document(USER, user_doc)
    user_id = str(user["_id"])
    logger.info("Registered user %s (%s)", user_id, user["role"])

    token = create_token(request.app.state.settings, user_id, req.email, user["role"])
    return {"token": token, "user": {"id": user_id, "name": req.name, "email": req.email, "role": user["role"]}}


@router.post("/api/auth/login")
def login(req: LoginRequest, request: Request, store: Store = Depends(get_store)):
    user = store[USER].find_one({"email": req.email})
    if not user:
        raise Unauthorized("Invalid credentials")

    if not verify_password(req.password, user.get("password_hash", "")):
        raise Unauthorized("Invalid credentials")

    if not user.get("is_active", True):
        raise Forbidden("Account disabled")

    user_id = str(user["_id"])
    token = create_token(request.app.state.settings, user_id, user["email"], user.get("role", "user"))
    return {"token": token, "user": {"id": user_id, "name": user.get("name"), "email": user.get("email"), "role": user.get("role", "user")}}


@router.get("/api/auth/me")
def me(user=Depends(require_user), store: Store = Depends(get_store)):
    doc = store.find_by_id(USER, user["id"])
    if doc is None:
        raise NotFound("User not found")
    doc.pop("password_hash", None)
    return {"user": serialize(doc)}


# ---------- App factory ----------

def create_app(settings: Optional[Settings] = None, client: Optional[MongoClient] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    logging.basicConfig(level=settings.log_level)

    if client is not None:
        store = Store(client, settings.database_name, transactions=settings.mongo_transactions)
    else:
        store = create_store(settings)
    store.ensure_indexes()

    app = FastAPI(title=settings.app_name)
    app.state.settings = settings
    app.state.store = store

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(CivicError, handle_civic_error)
    app.add_exception_handler(StarletteHTTPException, handle_http_error)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(DuplicateKeyError, handle_duplicate_key)
    app.add_exception_handler(Exception, handle_unexpected)

    app.include_router(router)
    for module in (reports, votes, drives, authorities, community, stats):
        app.include_router(module.router)

    logger.info("%s started (database=%s)", settings.app_name, settings.database_name)
    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:create_app", factory=True, host="0.0.0.0", port=8000)
