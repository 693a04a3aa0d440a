import logging
from datetime import datetime, timezone
from typing import Any, AsyncGenerator, Dict, List

from fastapi import Request
from sqlalchemy import inspect, select, text, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import aliased, declarative_base
from sqlalchemy.pool import NullPool

from messagely.errors import ConflictError, NotFoundError
from messagely.security import PasswordHasher

logger = logging.getLogger(__name__)

# Base class for SQLAlchemy models
Base = declarative_base()

REQUIRED_TABLES = {"users", "messages"}


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, the form stored in the database."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def build_engine(database_url: str) -> AsyncEngine:
    """Create the async SQLAlchemy engine for the configured database URL."""
    logger.debug(f"Creating database engine for {database_url.split('://')[0]}")

    # Bound parameters include password hashes
    if database_url.startswith("sqlite"):
        # SQLite connections are cheap; don't keep them open between requests
        return create_async_engine(database_url, echo=False, hide_parameters=True, poolclass=NullPool)

    return create_async_engine(database_url, echo=False, hide_parameters=True)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    """Session factory; objects stay usable after commit."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


async def init_db(engine: AsyncEngine) -> None:
    """
    Initialize the database by creating all tables.
    Called during application startup.
    """
    logger.debug("Initializing database")
    try:
        # Import models to register them with Base.metadata
        from messagely import models  # noqa: F401

        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency to get database session.
    Yields a session and ensures it's closed after use.
    """
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        await db.close()


async def check_db_health(engine: AsyncEngine) -> bool:
    """
    Check if the database is reachable and schema is applied.

    Returns:
        True if DB is healthy and all tables exist, False otherwise.
    """
    logger.debug("Checking database health...")
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
            tables = await conn.run_sync(lambda sync_conn: set(inspect(sync_conn).get_table_names()))
        missing = REQUIRED_TABLES - tables
        if missing:
            logger.error(f"Database schema not applied, missing tables: {sorted(missing)}")
            return False
        logger.debug("Database health check passed")
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False


# =============================================================================
# User Repository Functions
# =============================================================================

async def register_user(
    db: AsyncSession,
    hasher: PasswordHasher,
    username: str,
    password: str,
    first_name: str,
    last_name: str,
    phone: str,
):
    """
    Register a new user.

    Returns:
        The created User row; its password attribute is the bcrypt hash

    Raises:
        ConflictError: username already exists
    """
    from messagely.models import User

    logger.info(f"Registering user: {username}")

    hashed_password = await hasher.hash(password)
    user = User(
        username=username,
        password=hashed_password,
        first_name=first_name,
        last_name=last_name,
        phone=phone,
        join_at=utcnow(),
    )

    db.add(user)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        logger.info(f"Duplicate username rejected: {username}")
        raise ConflictError(f"Username already taken: {username}")

    logger.info(f"User registered: {username}")
    return user


async def authenticate_user(
    db: AsyncSession,
    hasher: PasswordHasher,
    username: str,
    password: str,
) -> bool:
    """
    Check a username/password pair.

    Unknown usernames and wrong passwords both return False; an unknown
    username still pays for one bcrypt verify.
    """
    from messagely.models import User

    logger.debug(f"Authenticating user: {username}")
    result = await db.execute(select(User.password).where(User.username == username))
    password_hash = result.scalar_one_or_none()

    if password_hash is None:
        is_valid = await hasher.burn(password)
    else:
        is_valid = await hasher.verify(password, password_hash)

    logger.info(f"Authentication for {username}: {'valid' if is_valid else 'invalid'}")
    return is_valid


async def update_login_timestamp(db: AsyncSession, username: str) -> None:
    """
    Set last_login_at to now.

    Raises:
        NotFoundError: no such user
    """
    from messagely.models import User

    result = await db.execute(
        update(User)
        .where(User.username == username)
        .values(last_login_at=utcnow())
    )

    if result.rowcount == 0:
        await db.rollback()
        raise NotFoundError(f"Can't find this user: {username}")

    await db.commit()
    logger.debug(f"Updated last_login_at for {username}")


async def get_all_users(db: AsyncSession) -> List[Dict[str, Any]]:
    """Basic info on all users, ordered by username."""
    from messagely.models import User

    result = await db.execute(
        select(User.username, User.first_name, User.last_name)
        .order_by(User.username.asc())
    )
    users = [dict(row) for row in result.mappings().all()]
    logger.info(f"Retrieved {len(users)} users")
    return users


async def get_user(db: AsyncSession, username: str) -> Dict[str, Any]:
    """
    Get user detail by username.

    Returns:
        {username, first_name, last_name, phone, join_at, last_login_at}

    Raises:
        NotFoundError: no such user
    """
    from messagely.models import User

    logger.info(f"Looking up user: {username}")
    result = await db.execute(
        select(
            User.username,
            User.first_name,
            User.last_name,
            User.phone,
            User.join_at,
            User.last_login_at,
        ).where(User.username == username)
    )
    row = result.mappings().one_or_none()

    if row is None:
        raise NotFoundError(f"Can't find this user: {username}")

    return dict(row)


# =============================================================================
# Message Repository Functions
# =============================================================================

def _message_view(row, participant_key: str) -> Dict[str, Any]:
    """Shape a joined message/user row, nesting the other party under participant_key."""
    return {
        "id": row.id,
        participant_key: {
            "username": row.username,
            "first_name": row.first_name,
            "last_name": row.last_name,
            "phone": row.phone,
        },
        "body": row.body,
        "sent_at": row.sent_at,
        "read_at": row.read_at,
    }


async def _messages_joined(db: AsyncSession, filter_column, join_column, username: str) -> list:
    from messagely.models import Message, User

    result = await db.execute(
        select(
            Message.id,
            Message.body,
            Message.sent_at,
            Message.read_at,
            User.username,
            User.first_name,
            User.last_name,
            User.phone,
        )
        .select_from(Message)
        .join(User, join_column == User.username)
        .where(filter_column == username)
        .order_by(Message.sent_at.asc(), Message.id.asc())
    )
    return result.all()


async def get_messages_from(db: AsyncSession, username: str) -> List[Dict[str, Any]]:
    """
    Messages sent by a user, each with the recipient's profile.

    Returns:
        [{id, to_user: {username, first_name, last_name, phone}, body, sent_at, read_at}]
        ordered by sent_at, id. Empty for users with no messages, including
        unknown usernames.
    """
    from messagely.models import Message

    rows = await _messages_joined(db, Message.from_username, Message.to_username, username)
    logger.info(f"Retrieved {len(rows)} messages from {username}")
    return [_message_view(row, "to_user") for row in rows]


async def get_messages_to(db: AsyncSession, username: str) -> List[Dict[str, Any]]:
    """
    Messages received by a user, each with the sender's profile.

    Returns:
        [{id, from_user: {username, first_name, last_name, phone}, body, sent_at, read_at}]
        ordered by sent_at, id.
    """
    from messagely.models import Message

    rows = await _messages_joined(db, Message.to_username, Message.from_username, username)
    logger.info(f"Retrieved {len(rows)} messages to {username}")
    return [_message_view(row, "from_user") for row in rows]


async def create_message(db: AsyncSession, from_username: str, to_username: str, body: str):
    """
    Store a new message.

    Raises:
        NotFoundError: sender or recipient does not exist
    """
    from messagely.models import Message, User

    logger.info(f"Creating message: from={from_username}, to={to_username}")

    result = await db.execute(
        select(User.username).where(User.username.in_([from_username, to_username]))
    )
    existing = set(result.scalars().all())
    for username in (from_username, to_username):
        if username not in existing:
            raise NotFoundError(f"Can't find this user: {username}")

    message = Message(
        from_username=from_username,
        to_username=to_username,
        body=body,
        sent_at=utcnow(),
    )
    db.add(message)
    await db.commit()

    logger.info(f"Message created successfully: {message.id}")
    return message


async def get_message(db: AsyncSession, message_id: int) -> Dict[str, Any]:
    """
    Get a message with both participants.

    Returns:
        {id, body, sent_at, read_at, from_user: {...}, to_user: {...}}

    Raises:
        NotFoundError: no such message
    """
    from messagely.models import Message, User

    sender = aliased(User)
    recipient = aliased(User)

    logger.info(f"Looking up message by ID: {message_id}")
    result = await db.execute(
        select(
            Message.id,
            Message.body,
            Message.sent_at,
            Message.read_at,
            sender.username.label("from_username"),
            sender.first_name.label("from_first_name"),
            sender.last_name.label("from_last_name"),
            sender.phone.label("from_phone"),
            recipient.username.label("to_username"),
            recipient.first_name.label("to_first_name"),
            recipient.last_name.label("to_last_name"),
            recipient.phone.label("to_phone"),
        )
        .select_from(Message)
        .join(sender, Message.from_username == sender.username)
        .join(recipient, Message.to_username == recipient.username)
        .where(Message.id == message_id)
    )
    row = result.one_or_none()

    if row is None:
        raise NotFoundError(f"No such message: {message_id}")

    return {
        "id": row.id,
        "body": row.body,
        "sent_at": row.sent_at,
        "read_at": row.read_at,
        "from_user": {
            "username": row.from_username,
            "first_name": row.from_first_name,
            "last_name": row.from_last_name,
            "phone": row.from_phone,
        },
        "to_user": {
            "username": row.to_username,
            "first_name": row.to_first_name,
            "last_name": row.to_last_name,
            "phone": row.to_phone,
        },
    }


async def mark_message_read(db: AsyncSession, message_id: int) -> Dict[str, Any]:
    """
    Set read_at to now.

    Returns:
        {id, read_at}

    Raises:
        NotFoundError: no such message
    """
    from messagely.models import Message

    read_at = utcnow()
    result = await db.execute(
        update(Message)
        .where(Message.id == message_id)
        .values(read_at=read_at)
    )

    if result.rowcount == 0:
        await db.rollback()
        raise NotFoundError(f"No such message: {message_id}")

    await db.commit()
    logger.info(f"Message {message_id} marked read")
    return {"id": message_id, "read_at": read_at}
