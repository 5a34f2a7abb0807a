from contextlib import contextmanager
import logging

from flask_sqlalchemy import SQLAlchemy
from flask_login import LoginManager
from flask_migrate import Migrate
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from licensing.errors import LicensingError, TransientStoreError


db = SQLAlchemy()
login_manager = LoginManager()
migrate = Migrate()

logger = logging.getLogger(__name__)


def init_extensions(app):
    """Initialize Flask extensions"""
    db.init_app(app)
    login_manager.init_app(app)
    migrate.init_app(app, db)
    login_manager.login_view = None

    return app


@contextmanager
def unit_of_work():
    """
    Transaction boundary for one logical write.

    Everything flushed inside the block commits together or not at all.
    Domain errors propagate unchanged after rollback; store failures are
    surfaced as TransientStoreError.
    """
    session = db.session
    try:
        yield session
        session.commit()
    except LicensingError:
        session.rollback()
        raise
    except SQLAlchemyError as exc:
        session.rollback()
        logger.error("Transaction aborted: %s", exc, exc_info=True)
        raise TransientStoreError("Storage temporarily unavailable, please retry") from exc
    except Exception:
        session.rollback()
        raise


def conditional_update(model, *criteria, **values):
    """
    Single UPDATE guarded by ``criteria``; returns the affected row count.

    Loaded instances are not refreshed, callers expire what they hold.
    """
    stmt = (
        update(model)
        .where(*criteria)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return db.session.execute(stmt).rowcount


def increment(model, row_id, **deltas):
    """Atomic ``col = col + delta`` for one row."""
    values = {name: getattr(model, name) + delta for name, delta in deltas.items()}
    rowcount = conditional_update(model, model.id == row_id, **values)
    instance = db.session.identity_map.get(db.session.identity_key(model, row_id))
    if instance is not None:
        db.session.expire(instance, list(deltas))
    return rowcount
