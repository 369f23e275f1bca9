"""
settlement_unit -- the commit/rollback boundary around one settlement.

Responsibility:
    Every settlement module entry point runs its body inside
    ``settlement_unit``.  On success the session is committed; on any
    exception it is rolled back, so no partial stock, balance, ledger or
    record change survives a failed call.

Architecture position:
    Services.  Used only by settlement_modules, which own the transaction.

Failure modes:
    - SettlementError subclasses are re-raised unchanged after rollback.
    - Any other exception (SQLAlchemyError at flush or commit, an engine
      ValueError) is wrapped in SettlementFailure, chained to the cause.
"""

from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy.orm import Session

from settlement_kernel.exceptions import SettlementError, SettlementFailure
from settlement_kernel.logging_config import get_logger

logger = get_logger("services.unit_of_work")


@contextmanager
def settlement_unit(session: Session, operation: str) -> Iterator[Session]:
    """
    Commit on success, roll back on failure.

    Usage:
        with settlement_unit(self._session, "create_sale"):
            ...
    """
    try:
        yield session
        session.commit()
    except SettlementError as exc:
        session.rollback()
        logger.warning(
            "settlement_rejected",
            extra={"operation": operation, "error_code": exc.code, "error": str(exc)},
        )
        raise
    except Exception as exc:
        session.rollback()
        logger.exception(
            "settlement_failed",
            extra={"operation": operation, "error_type": type(exc).__name__},
        )
        raise SettlementFailure(operation, f"{type(exc).__name__}: {exc}") from exc

    logger.info("settlement_committed", extra={"operation": operation})
