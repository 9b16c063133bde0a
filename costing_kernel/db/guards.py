"""
ORM-Level Write Guards for engine-owned data.

Two rules are enforced before any SQL is sent to the database:

  1. Engine-owned fields on Activity and Process (allocated_cost,
     total_cost, unit_cost, ...) are computed by the allocation pipeline.
     They may only change inside ``engine_write_scope()``, which the
     pipeline persistence step opens around its writes.  Any other write
     raises EngineFieldWriteError.

  2. AccountActivityMapping.ratio must lie in (0, 1], and the ratios of one
     account may never sum above 1.0.  A violation raises MappingRatioError.

    session.flush()
         |
         v
    [before_flush] --> _check_engine_fields() ----> EngineFieldWriteError
         |         --> _check_mapping_ratios() ---> MappingRatioError
         v
    SQL sent to database (only if checks pass)

Both checks run as a Session-level before_flush listener so they see the
complete flush plan (new, dirty and deleted objects) at once.

Note: bulk UPDATE statements and raw SQL bypass these listeners.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from decimal import Decimal

from sqlalchemy import event, select
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import get_history

from costing_kernel.exceptions import EngineFieldWriteError, MappingRatioError
from costing_kernel.logging_config import get_logger

logger = get_logger("db.guards")

_ENGINE_WRITE: ContextVar[bool] = ContextVar("engine_write_scope", default=False)

_ZERO = Decimal("0")
_ONE = Decimal("1")


@contextmanager
def engine_write_scope() -> Iterator[None]:
    """Allow engine-owned fields to be written for the duration of the block."""
    token = _ENGINE_WRITE.set(True)
    try:
        yield
    finally:
        _ENGINE_WRITE.reset(token)


def in_engine_write_scope() -> bool:
    return _ENGINE_WRITE.get()


# =============================================================================
# Engine-owned field protection
# =============================================================================


def _engine_fields_for(obj) -> tuple[str, ...]:
    from costing_kernel.models.activity import ACTIVITY_ENGINE_FIELDS, Activity
    from costing_kernel.models.process import PROCESS_ENGINE_FIELDS, Process

    if isinstance(obj, Activity):
        return ACTIVITY_ENGINE_FIELDS
    if isinstance(obj, Process):
        return PROCESS_ENGINE_FIELDS
    return ()


def _check_engine_fields(session: Session) -> None:
    if in_engine_write_scope():
        return

    for obj in session.dirty:
        for field in _engine_fields_for(obj):
            if get_history(obj, field).has_changes():
                raise EngineFieldWriteError(
                    type(obj).__name__, str(obj.id), field
                )

    # New rows start at zero; non-zero values can only come from the engine
    for obj in session.new:
        for field in _engine_fields_for(obj):
            value = getattr(obj, field)
            if value is not None and value != _ZERO:
                raise EngineFieldWriteError(
                    type(obj).__name__, str(obj.id), field
                )


# =============================================================================
# Account -> Activity ratio validation
# =============================================================================


def _check_mapping_ratios(session: Session) -> None:
    from costing_kernel.models.activity import AccountActivityMapping

    touched = [
        obj
        for obj in list(session.new) + list(session.dirty)
        if isinstance(obj, AccountActivityMapping)
    ]
    if not touched:
        return

    for mapping in touched:
        ratio = mapping.ratio
        if ratio is None or ratio <= _ZERO or ratio > _ONE:
            raise MappingRatioError(
                str(mapping.account_id),
                str(ratio),
                "ratio must be greater than 0 and at most 1",
            )

    deleted_ids = {
        obj.id for obj in session.deleted if isinstance(obj, AccountActivityMapping)
    }

    for account_id in {m.account_id for m in touched}:
        with session.no_autoflush:
            rows = session.execute(
                select(AccountActivityMapping.id, AccountActivityMapping.ratio).where(
                    AccountActivityMapping.account_id == account_id
                )
            ).all()

        ratios: dict[object, Decimal] = {
            row_id: row_ratio for row_id, row_ratio in rows if row_id not in deleted_ids
        }
        for mapping in touched:
            key = mapping.id if mapping.id is not None else id(mapping)
            if mapping.account_id == account_id:
                ratios[key] = mapping.ratio
            else:
                # Moved to another account in this flush
                ratios.pop(key, None)

        total = sum(ratios.values(), _ZERO)
        if total > _ONE:
            raise MappingRatioError(
                str(account_id),
                str(total),
                "total allocation ratios for the account cannot exceed 1.0",
            )


def _before_flush(session, flush_context, instances):
    _check_engine_fields(session)
    _check_mapping_ratios(session)


# =============================================================================
# Registration
# =============================================================================


def register_write_guards() -> None:
    """
    Register the write guard listeners (idempotent).

    Called from init_engine_from_url(); tests that build their own engine
    call it directly.
    """
    if not event.contains(Session, "before_flush", _before_flush):
        event.listen(Session, "before_flush", _before_flush)
        logger.debug("write_guards_registered")


def unregister_write_guards() -> None:
    """Remove the write guard listeners if registered."""
    if event.contains(Session, "before_flush", _before_flush):
        event.remove(Session, "before_flush", _before_flush)
        logger.debug("write_guards_unregistered")
