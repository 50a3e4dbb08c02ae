from __future__ import annotations

from collections.abc import Callable
from contextlib import AbstractContextManager
from functools import partial

import pytest
from sqlalchemy.orm import Session, sessionmaker

from ztadmin.db.session import session_scope


@pytest.fixture()
def session_scope_factory(
    session_factory: sessionmaker[Session],
) -> Callable[[], AbstractContextManager[Session]]:
    return partial(session_scope, session_factory)
