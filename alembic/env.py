import sys
import warnings
from logging.config import fileConfig
from pathlib import Path

from alembic import context
from sqlalchemy import engine_from_config, pool
from sqlalchemy.exc import SAWarning

sys.path.append(str(Path(__file__).resolve().parents[1]))

from chorebank.db import Base, BuildAdminConnectionUrl
from chorebank.modules.chores import models as _chores  # noqa: F401
from chorebank.modules.coupons import models as _coupons  # noqa: F401
from chorebank.modules.families import models as _families  # noqa: F401
from chorebank.modules.ledger import models as _ledger  # noqa: F401
from chorebank.modules.rewards import models as _rewards  # noqa: F401
from chorebank.modules.subscriptions import models as _subscriptions  # noqa: F401

alembic_cfg = context.config
if alembic_cfg.config_file_name is not None:
    fileConfig(alembic_cfg.config_file_name, disable_existing_loggers=False)

# SQL Server preview builds report versions SQLAlchemy does not parse.
warnings.filterwarnings("ignore", message="Unrecognized server version info", category=SAWarning)


def _DatabaseUrl() -> str:
    return alembic_cfg.get_main_option("sqlalchemy.url") or BuildAdminConnectionUrl()


def _Upgrade(**options) -> None:
    context.configure(target_metadata=Base.metadata, **options)
    with context.begin_transaction():
        context.run_migrations()


def _RunOffline() -> None:
    _Upgrade(url=_DatabaseUrl(), literal_binds=True, dialect_opts={"paramstyle": "named"})


def _RunOnline() -> None:
    section = dict(alembic_cfg.get_section(alembic_cfg.config_ini_section) or {})
    section["sqlalchemy.url"] = _DatabaseUrl()
    engine = engine_from_config(section, prefix="sqlalchemy.", poolclass=pool.NullPool)
    with engine.connect() as connection:
        # ALTER support on SQLite needs batch mode.
        _Upgrade(connection=connection, render_as_batch=connection.dialect.name == "sqlite")


if context.is_offline_mode():
    _RunOffline()
else:
    _RunOnline()
