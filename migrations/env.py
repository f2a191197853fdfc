import logging
import os
from logging.config import fileConfig
from pathlib import Path

from flask import current_app
from alembic import context

config = context.config

_ini = config.config_file_name
if _ini and Path(_ini).exists():
    fileConfig(_ini)
else:
    logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("alembic.env")

# Flask-SQLAlchemy 3.x exposes the engine directly
_db = current_app.extensions["migrate"].db
config.set_main_option(
    "sqlalchemy.url",
    _db.engine.url.render_as_string(hide_password=False).replace("%", "%%"),
)

# Importing the package registers accounts / billing_records / billing_event_logs
import schedmate.models  # noqa: E402,F401

target_metadata = _db.metadata

# Index drops on reflected-only indexes need an explicit allowlist
_DROP_INDEX_ALLOWLIST = {
    name.strip()
    for name in os.getenv("ALEMBIC_DROP_INDEX_ALLOWLIST", "").split(",")
    if name.strip()
}


def _include_object(obj, name, type_, reflected, compare_to):
    if type_ == "index" and reflected and compare_to is None:
        return name in _DROP_INDEX_ALLOWLIST
    return True


def _skip_empty_revisions(context_, revision, directives):
    if getattr(config.cmd_opts, "autogenerate", False) and directives[0].upgrade_ops.is_empty():
        directives[:] = []
        logger.info("No changes in schema detected.")


def run_migrations_offline():
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
        compare_type=True,
        compare_server_default=True,
        include_object=_include_object,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online():
    conf_args = dict(current_app.extensions["migrate"].configure_args)
    conf_args.setdefault("process_revision_directives", _skip_empty_revisions)
    conf_args.update(
        compare_type=True,
        compare_server_default=True,
        include_object=_include_object,
        target_metadata=target_metadata,
    )
    with _db.engine.connect() as connection:
        context.configure(connection=connection, **conf_args)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
