"""
Base service with the session handling shared by every gateway service.

Services are handed a SQLAlchemy session. Building-block services (ledger,
allocation, credits) only flush; orchestrating services decide the
transaction boundary with ``transaction()``.
"""

from contextlib import contextmanager
from typing import Optional

from sqlalchemy.orm import Session

from ..exceptions import ErrorCode, ServiceError
from ..utils.logger import ContextAwareLogger, get_logger


class SessionService:
    """Service bound to an existing database session."""

    def __init__(self, session: Session, logger: Optional[ContextAwareLogger] = None):
        if session is None:
            raise ServiceError(
                f"{type(self).__name__} requires a database session",
                error_code=ErrorCode.CONFIGURATION_ERROR,
            )
        self.session = session
        self.logger = logger or get_logger()

    @contextmanager
    def transaction(self):
        """
        Context manager for transactional operations.

        Usage:
            with service.transaction():
                service.do_something()
                # Auto-commits on success, rollback on exception
        """
        try:
            yield self.session
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
