from urllib.parse import quote_plus

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool
from starlette.requests import Request

from chorebank.core.env import ReadEnv, ReadIntEnv

Base = declarative_base()


def _build_sqlserver_url(login_env: str, password_env: str, database_override: str | None = None) -> str:
    driver = ReadEnv("SQLSERVER_DRIVER")
    host = ReadEnv("SQLSERVER_HOST")
    port = ReadEnv("SQLSERVER_PORT")
    database = database_override or ReadEnv("SQLSERVER_DB")
    user = ReadEnv(login_env)
    password = ReadEnv(password_env)

    missing = [key for key, value in {
        "SQLSERVER_HOST": host,
        "SQLSERVER_PORT": port,
        "SQLSERVER_DB": database,
        "SQLSERVER_DRIVER": driver,
        login_env: user,
        password_env: password,
    }.items() if not value]
    if missing:
        raise RuntimeError(f"Missing database configuration: {', '.join(missing)}")

    driver_encoded = quote_plus(driver)
    password_encoded = quote_plus(password)
    return (
        f"mssql+pyodbc://{user}:{password_encoded}@{host}:{port}/{database}"
        f"?driver={driver_encoded}&Encrypt=yes&TrustServerCertificate=yes"
    )


def BuildUserConnectionUrl() -> str:
    explicit = ReadEnv("DATABASE_URL")
    if explicit:
        return explicit
    return _build_sqlserver_url("SQLSERVER_USER_LOGIN", "SQLSERVER_USER_PASSWORD")


def BuildAdminConnectionUrl(database_override: str | None = None) -> str:
    explicit = ReadEnv("DATABASE_ADMIN_URL") or ReadEnv("DATABASE_URL")
    if explicit:
        return explicit
    return _build_sqlserver_url("SQLSERVER_ADMIN_LOGIN", "SQLSERVER_ADMIN_PASSWORD", database_override)


def _enable_sqlite_foreign_keys(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, _record) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def BuildEngine(url: str | None = None) -> Engine:
    url = url or BuildUserConnectionUrl()
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url in {"sqlite://", "sqlite:///"}:
            kwargs["poolclass"] = StaticPool
        engine = create_engine(url, **kwargs)
        _enable_sqlite_foreign_keys(engine)
        return engine

    return create_engine(
        url,
        pool_pre_ping=True,
        pool_size=ReadIntEnv("SQLALCHEMY_POOL_SIZE", 10),
        max_overflow=ReadIntEnv("SQLALCHEMY_MAX_OVERFLOW", 20),
        pool_timeout=ReadIntEnv("SQLALCHEMY_POOL_TIMEOUT", 60),
    )


def BuildSessionFactory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


def GetDb(request: Request):
    session_factory = request.app.state.SessionLocal
    db = session_factory()
    try:
        yield db
    finally:
        db.close()
