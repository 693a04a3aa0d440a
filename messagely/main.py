import logging
from contextlib import asynccontextmanager
from typing import Annotated, Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, Path, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from messagely.auth import ensure_correct_user, ensure_logged_in, get_password_hasher, get_token_issuer
from messagely.config import Settings, get_settings
from messagely.errors import ConflictError, ForbiddenError, NotFoundError, UnauthorizedError, register_exception_handlers
from messagely.logging_utils import RequestLoggingMiddleware, log_auth_data, setup_logging
from messagely.metrics import get_metrics, get_metrics_content_type, record_auth_outcome, record_message_sent
from messagely.schemas import (
    ErrorResponse,
    HealthResponse,
    LoginRequest,
    MessageCreated,
    MessageCreateRequest,
    MessageDetail,
    MessageFromUser,
    MessageReadResponse,
    MessageToUser,
    RegisterRequest,
    TokenResponse,
    UserDetail,
    UserSummary,
)
from messagely.security import PasswordHasher, TokenIssuer
from messagely.storage import (
    authenticate_user,
    build_engine,
    build_session_factory,
    check_db_health,
    create_message,
    get_all_users,
    get_db,
    get_message,
    get_messages_from,
    get_messages_to,
    get_user,
    init_db,
    mark_message_read,
    register_user,
    update_login_timestamp,
)

logger = logging.getLogger(__name__)

router = APIRouter()

AUTH_ERRORS = {401: {"model": ErrorResponse, "description": "Missing or invalid token"}}
OWNER_ERRORS = {
    **AUTH_ERRORS,
    403: {"model": ErrorResponse, "description": "Token belongs to another user"},
}

# Largest id the database integer column can hold
MAX_MESSAGE_ID = 2**63 - 1


# =============================================================================
# Health Check Routes
# =============================================================================

@router.get("/health/live", response_model=HealthResponse)
async def health_live() -> HealthResponse:
    """
    Liveness probe - always returns 200 once the app is running.
    """
    return HealthResponse(status="ok")


@router.get("/health/ready", response_model=HealthResponse)
async def health_ready(request: Request, response: Response) -> HealthResponse:
    """
    Readiness probe - returns 200 only if the DB is reachable and the
    users/messages tables exist, otherwise 503.
    """
    if not await check_db_health(request.app.state.engine):
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="Database not reachable or schema not applied"
        )

    return HealthResponse(status="ready")


# =============================================================================
# Auth Routes
# =============================================================================

@router.post(
    "/auth/register",
    response_model=TokenResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid request body"},
        409: {"model": ErrorResponse, "description": "Username already taken"},
    }
)
async def register(
    payload: RegisterRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    hasher: PasswordHasher = Depends(get_password_hasher),
    token_issuer: TokenIssuer = Depends(get_token_issuer),
) -> TokenResponse:
    """
    Register a new user, log them in, and return a token.

    {username, password, first_name, last_name, phone} => {token}
    """
    logger.info(f"Register request received for {payload.username}")

    try:
        user = await register_user(
            db=db,
            hasher=hasher,
            username=payload.username,
            password=payload.password,
            first_name=payload.first_name,
            last_name=payload.last_name,
            phone=payload.phone,
        )
    except ConflictError:
        record_auth_outcome("register", "conflict")
        log_auth_data(request, username=payload.username, result="conflict")
        raise

    await update_login_timestamp(db, user.username)
    token = token_issuer.issue({"username": user.username})

    record_auth_outcome("register", "success")
    log_auth_data(request, username=user.username, result="success")

    return TokenResponse(token=token)


@router.post(
    "/auth/login",
    response_model=TokenResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid request body"},
        401: {"model": ErrorResponse, "description": "Invalid username/password"},
    }
)
async def login(
    payload: LoginRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    hasher: PasswordHasher = Depends(get_password_hasher),
    token_issuer: TokenIssuer = Depends(get_token_issuer),
) -> TokenResponse:
    """
    {username, password} => {token}
    """
    if not await authenticate_user(db, hasher, payload.username, payload.password):
        record_auth_outcome("login", "invalid_credentials")
        log_auth_data(request, username=payload.username, result="invalid_credentials")
        raise UnauthorizedError("Invalid username/password")

    await update_login_timestamp(db, payload.username)
    token = token_issuer.issue({"username": payload.username})

    record_auth_outcome("login", "success")
    log_auth_data(request, username=payload.username, result="success")

    return TokenResponse(token=token)


# =============================================================================
# User Routes
# =============================================================================

@router.get("/users", response_model=List[UserSummary], responses=AUTH_ERRORS)
async def list_users(
    claims: Dict[str, Any] = Depends(ensure_logged_in),
    db: AsyncSession = Depends(get_db),
) -> List[Dict[str, Any]]:
    """
    List all users ordered by username.

    => [{username, first_name, last_name}, ...]
    """
    return await get_all_users(db)


@router.get(
    "/users/{username}",
    response_model=UserDetail,
    responses={**OWNER_ERRORS, 404: {"model": ErrorResponse, "description": "No such user"}},
)
async def user_detail(
    username: str,
    claims: Dict[str, Any] = Depends(ensure_correct_user),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    """
    => {username, first_name, last_name, phone, join_at, last_login_at}
    """
    return await get_user(db, username)


@router.get("/users/{username}/to", response_model=List[MessageFromUser], responses=OWNER_ERRORS)
async def messages_to_user(
    username: str,
    claims: Dict[str, Any] = Depends(ensure_correct_user),
    db: AsyncSession = Depends(get_db),
) -> List[Dict[str, Any]]:
    """
    Messages received by the user, oldest first.

    => [{id, body, sent_at, read_at, from_user: {username, first_name, last_name, phone}}, ...]
    """
    return await get_messages_to(db, username)


@router.get("/users/{username}/from", response_model=List[MessageToUser], responses=OWNER_ERRORS)
async def messages_from_user(
    username: str,
    claims: Dict[str, Any] = Depends(ensure_correct_user),
    db: AsyncSession = Depends(get_db),
) -> List[Dict[str, Any]]:
    """
    Messages sent by the user, oldest first.

    => [{id, body, sent_at, read_at, to_user: {username, first_name, last_name, phone}}, ...]
    """
    return await get_messages_from(db, username)


# =============================================================================
# Message Routes
# =============================================================================

@router.post(
    "/messages",
    response_model=MessageCreated,
    status_code=status.HTTP_201_CREATED,
    responses={**AUTH_ERRORS, 404: {"model": ErrorResponse, "description": "No such recipient"}},
)
async def send_message(
    payload: MessageCreateRequest,
    claims: Dict[str, Any] = Depends(ensure_logged_in),
    db: AsyncSession = Depends(get_db),
) -> MessageCreated:
    """
    Send a message from the logged-in user.

    {to_username, body} => {id, from_username, to_username, body, sent_at}
    """
    message = await create_message(db, claims["username"], payload.to_username, payload.body)
    record_message_sent()
    return MessageCreated.model_validate(message)


@router.get("/messages/{message_id}", response_model=MessageDetail, responses=OWNER_ERRORS)
async def message_detail(
    message_id: Annotated[int, Path(ge=1, le=MAX_MESSAGE_ID, description="Message id")],
    claims: Dict[str, Any] = Depends(ensure_logged_in),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    """
    Only the sender or the recipient may view a message; to anyone else it
    does not exist.
    """
    message = await get_message(db, message_id)

    participants = (message["from_user"]["username"], message["to_user"]["username"])
    if claims["username"] not in participants:
        raise NotFoundError(f"No such message: {message_id}")

    return message


@router.post("/messages/{message_id}/read", response_model=MessageReadResponse, responses=OWNER_ERRORS)
async def mark_read(
    message_id: Annotated[int, Path(ge=1, le=MAX_MESSAGE_ID, description="Message id")],
    claims: Dict[str, Any] = Depends(ensure_logged_in),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    """
    Mark a message read; only its recipient may do so.
    """
    message = await get_message(db, message_id)

    if claims["username"] != message["to_user"]["username"]:
        if claims["username"] == message["from_user"]["username"]:
            raise ForbiddenError("Cannot set this message to read")
        raise NotFoundError(f"No such message: {message_id}")

    return await mark_message_read(db, message_id)


# =============================================================================
# Metrics Route
# =============================================================================

@router.get("/metrics")
async def metrics() -> Response:
    """
    Expose Prometheus-style metrics.
    """
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )


# =============================================================================
# Application Factory
# =============================================================================

def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the application.

    Settings are read once here and handed to each component: the engine
    gets the database URL, the hasher the work factor, the token issuer
    the signing secret.
    """
    settings = settings or get_settings()
    setup_logging(settings.LOG_LEVEL)

    engine = build_engine(settings.DATABASE_URL)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await init_db(engine)
        yield
        await engine.dispose()

    app = FastAPI(
        title="Messagely",
        description="User registration, authentication and direct messages",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = build_session_factory(engine)
    app.state.password_hasher = PasswordHasher(settings.BCRYPT_WORK_FACTOR)
    app.state.token_issuer = TokenIssuer(
        secret_key=settings.SECRET_KEY,
        algorithm=settings.JWT_ALGORITHM,
        expire_minutes=settings.TOKEN_EXPIRE_MINUTES,
    )

    app.add_middleware(RequestLoggingMiddleware)
    register_exception_handlers(app)
    app.include_router(router)

    return app


app = create_app()
