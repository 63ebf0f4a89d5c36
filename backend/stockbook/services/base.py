# Overview: Common constructor for services that work on an explicit SQLAlchemy session.

from __future__ import annotations

from ..errors import StorageError


class SessionService:
    """
    Services receive the session they work on instead of reaching for a
    process-wide handle. Building one before storage is ready fails here,
    not at the first query.
    """

    def __init__(self, session):
        if session is None:
            raise StorageError("storage is not initialized")
        self.session = session
