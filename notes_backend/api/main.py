import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError
from pydantic import BaseModel, ConfigDict, Field, field_validator
from starlette.exceptions import HTTPException as StarletteHTTPException

from notes_database import (
    DuplicateUsernameError,
    MigrationError,
    NoteStore,
    StorageError,
    StorageTimeoutError,
)
from notes_database.config import Settings, get_settings

from .security import AuthManager, TokenUser

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/login", auto_error=False)

# Matches the width of notes.title.
TITLE_MAX_LENGTH = 128


# Pydantic models for serialization and validation

class Credentials(BaseModel):
    username: str = Field(..., min_length=1, max_length=64, description="User's username")
    password: str = Field(..., min_length=1, max_length=256)


class UserOut(BaseModel):
    id: int
    username: str


class LoginOut(BaseModel):
    token: str
    user: UserOut


class MessageOut(BaseModel):
    message: str


class NoteIn(BaseModel):
    title: str = Field(..., max_length=TITLE_MAX_LENGTH)
    content: Optional[str] = Field(default=None, description="Note content")
    color: Optional[str] = Field(default=None, pattern=r"^#[0-9a-fA-F]{6}$",
                                 description="Background color as #rrggbb")

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, value):
        if not value.strip():
            raise ValueError("Title is required")
        return value


class NoteOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    content: Optional[str]
    color: str
    created_at: datetime
    updated_at: datetime


class NoteCreated(NoteOut):
    user_id: int


# Dependencies

def get_store(request: Request) -> NoteStore:
    return request.app.state.store


def get_auth(request: Request) -> AuthManager:
    return request.app.state.auth


def get_current_user(
    token: Optional[str] = Depends(oauth2_scheme),
    auth: AuthManager = Depends(get_auth),
    store: NoteStore = Depends(get_store),
) -> TokenUser:
    """Validates the bearer token and checks its user still exists."""
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Access token required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        user = auth.decode_access_token(token)
    except JWTError:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid token")
    if store.get_user(user.id) is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid token")
    return user


router = APIRouter(prefix="/api")


#####################
# AUTH ENDPOINTS
#####################

# PUBLIC_INTERFACE
@router.post("/register", status_code=201, response_model=MessageOut, summary="Register a new user",
             tags=["Authentication"])
def register(creds: Credentials, store: NoteStore = Depends(get_store), auth: AuthManager = Depends(get_auth)):
    """
    Register a new user. The password is stored as a bcrypt hash.
    """
    try:
        store.create_user(creds.username, auth.get_password_hash(creds.password))
    except DuplicateUsernameError:
        raise HTTPException(status_code=400, detail="Username already exists")
    logger.info("Registered user %s", creds.username)
    return {"message": "User created successfully"}


# PUBLIC_INTERFACE
@router.post("/login", response_model=LoginOut, summary="Login and get a bearer token", tags=["Authentication"])
def login(creds: Credentials, store: NoteStore = Depends(get_store), auth: AuthManager = Depends(get_auth)):
    """
    User login. Returns a token valid for 24 hours and the user's identity.
    """
    user = store.get_user_by_username(creds.username)
    if not user or not auth.verify_password(creds.password, user.password):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    token = auth.create_access_token(user.id, user.username)
    return {"token": token, "user": {"id": user.id, "username": user.username}}


# PUBLIC_INTERFACE
@router.get("/me", response_model=UserOut, summary="Get current user", tags=["Authentication"])
def get_profile(current_user: TokenUser = Depends(get_current_user)):
    return {"id": current_user.id, "username": current_user.username}


#####################
# NOTES ENDPOINTS
#####################

# PUBLIC_INTERFACE
@router.get("/notes", response_model=List[NoteOut], summary="List the user's notes", tags=["Notes"])
def list_notes(store: NoteStore = Depends(get_store), current_user: TokenUser = Depends(get_current_user)):
    """
    Notes of the authenticated user, most recently updated first (at most 100).
    """
    return store.list_notes(current_user.id)


# PUBLIC_INTERFACE
@router.get("/notes/{note_id}", response_model=NoteOut, summary="Get a single note", tags=["Notes"])
def get_note(note_id: int, store: NoteStore = Depends(get_store),
             current_user: TokenUser = Depends(get_current_user)):
    note = store.get_note(note_id, current_user.id)
    if not note:
        raise HTTPException(status_code=404, detail="Note not found")
    return note


# PUBLIC_INTERFACE
@router.post("/notes", response_model=NoteCreated, status_code=201, summary="Create a new note", tags=["Notes"])
def create_note(note: NoteIn, store: NoteStore = Depends(get_store),
                current_user: TokenUser = Depends(get_current_user)):
    """
    Create a new note for the authenticated user. Color defaults to pale yellow.
    """
    return store.create_note(current_user.id, note.title, note.content, note.color)


# PUBLIC_INTERFACE
@router.put("/notes/{note_id}", response_model=NoteOut, summary="Update a note", tags=["Notes"])
def update_note(note_id: int, note: NoteIn, store: NoteStore = Depends(get_store),
                current_user: TokenUser = Depends(get_current_user)):
    """
    Replace title and content of a note; color is kept unless given.
    """
    updated = store.update_note(note_id, current_user.id, note.title, note.content, note.color)
    if updated is None:
        raise HTTPException(status_code=404, detail="Note not found")
    return updated


# PUBLIC_INTERFACE
@router.delete("/notes/{note_id}", response_model=MessageOut, summary="Delete a note", tags=["Notes"])
def delete_note(note_id: int, store: NoteStore = Depends(get_store),
                current_user: TokenUser = Depends(get_current_user)):
    if not store.delete_note(note_id, current_user.id):
        raise HTTPException(status_code=404, detail="Note not found")
    return {"message": "Note deleted successfully"}


# Error handlers

def http_exception_handler(request: Request, exc: StarletteHTTPException):
    detail = exc.detail
    if exc.status_code == 404 and request.url.path.startswith("/api") and detail == "Not Found":
        detail = "API endpoint not found"
    return JSONResponse(status_code=exc.status_code, content={"error": detail}, headers=exc.headers)


def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = [err for err in exc.errors() if err.get("loc")]
    fields = {str(err["loc"][-1]) for err in errors}
    title_errors = {err["type"] for err in errors if str(err["loc"][-1]) == "title"}
    if fields & {"username", "password"}:
        message = "Username and password required"
    elif title_errors == {"string_too_long"}:
        message = f"Title must be at most {TITLE_MAX_LENGTH} characters"
    elif "title" in fields:
        message = "Title is required"
    elif fields:
        message = "Invalid " + ", ".join(sorted(fields))
    else:
        message = "Invalid request"
    return JSONResponse(status_code=400, content={"error": message})


def storage_timeout_handler(request: Request, exc: StorageTimeoutError):
    logger.warning("%s %s timed out: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=503, content={"error": "Storage timed out"})


def storage_error_handler(request: Request, exc: StorageError):
    logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"error": "Server error"})


# PUBLIC_INTERFACE
def create_app(store: Optional[NoteStore] = None, settings: Optional[Settings] = None) -> FastAPI:
    """
    Builds the API. ``store`` is created from settings at startup when not given;
    either way it is initialised on startup and closed on shutdown.
    """
    settings = settings or get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.store is None:
            app.state.store = NoteStore.from_settings(settings)
        try:
            executed = app.state.store.init()
            if executed:
                logger.info("Applied migrations: %s", ", ".join(executed))
        except MigrationError:
            logger.exception("Database migration failed; continuing startup")
        except StorageError:
            logger.exception("Database initialisation failed; continuing startup")
        yield
        app.state.store.close()
        logger.info("Database connections closed")

    app = FastAPI(
        title="Personal Notes Backend API",
        description="Backend API for handling user auth and personal notes management.",
        version="1.0.0",
        lifespan=lifespan,
        openapi_tags=[
            {"name": "Authentication", "description": "User registration, login, and security"},
            {"name": "Notes", "description": "Create, update, view, delete notes"}
        ]
    )
    app.state.store = store
    app.state.auth = AuthManager.from_settings(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StorageTimeoutError, storage_timeout_handler)
    app.add_exception_handler(StorageError, storage_error_handler)

    # Root Health Check
    @app.get("/", summary="Health Check", tags=["General"])
    def health_check():
        """Simple health check endpoint."""
        return {"message": "Healthy"}

    app.include_router(router)
    return app


app = create_app()
