import logging
import threading
import time
import traceback
from pathlib import Path

from alembic import command
from alembic.config import Config

from chorebank.core.env import ReadIntEnv
from chorebank.db import BuildAdminConnectionUrl

logger = logging.getLogger("app.migrations")

ROOT_DIR = Path(__file__).resolve().parents[2]
DEFAULT_TIMEOUT_SECONDS = 600
DEFAULT_PROGRESS_SECONDS = 20


def BuildAlembicConfig(url: str | None = None) -> Config:
    ini_path = ROOT_DIR / "alembic.ini"
    if not ini_path.exists():
        raise RuntimeError(f"alembic.ini not found at {ini_path}")

    config = Config(str(ini_path))
    config.set_main_option("script_location", str(ROOT_DIR / "alembic"))
    config.set_main_option("sqlalchemy.url", url or BuildAdminConnectionUrl())
    return config


def _WaitForUpgrade(done: threading.Event, timeout_seconds: int, progress_seconds: int) -> None:
    started = time.monotonic()
    while not done.wait(timeout=max(1, progress_seconds)):
        elapsed = int(time.monotonic() - started)
        if timeout_seconds > 0 and elapsed >= timeout_seconds:
            logger.error("schema upgrade timed out elapsed=%ss", elapsed)
            raise TimeoutError(f"schema upgrade did not finish within {timeout_seconds}s")
        logger.info("schema upgrade in progress elapsed=%ss", elapsed)


def RunMigrations(url: str | None = None, revision: str = "head") -> None:
    """Upgrade the schema to `revision` on a worker thread.

    The caller blocks until the upgrade finishes, logging progress, and gets a
    TimeoutError once MIGRATIONS_TIMEOUT_SECONDS is exceeded.
    """
    config = BuildAlembicConfig(url)
    timeout_seconds = ReadIntEnv("MIGRATIONS_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS)
    progress_seconds = ReadIntEnv("MIGRATIONS_PROGRESS_LOG_SECONDS", DEFAULT_PROGRESS_SECONDS)
    logger.info("schema upgrade starting revision=%s timeout=%ss", revision, timeout_seconds)

    failure: list[str] = []
    done = threading.Event()

    def _upgrade() -> None:
        try:
            command.upgrade(config, revision)
        except Exception:  # noqa: BLE001
            failure.append(traceback.format_exc())
        finally:
            done.set()

    threading.Thread(target=_upgrade, name="chorebank-migrations", daemon=True).start()
    _WaitForUpgrade(done, timeout_seconds, progress_seconds)

    if failure:
        logger.error("schema upgrade failed\n%s", failure[0])
        raise RuntimeError("schema upgrade failed")
    logger.info("schema upgrade complete revision=%s", revision)
