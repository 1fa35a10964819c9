import os
import tempfile

_tmp = tempfile.mkdtemp(prefix="pinzo-tests-")
os.environ["DATABASE_URL"] = "sqlite:///" + os.path.join(_tmp, "test.db")
os.environ["SECRET_KEY"] = "test-secret"
os.environ["FORCE_HTTPS"] = "1"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from pinzo.app import app  # noqa: E402
from pinzo.db import Base, SessionLocal, engine, init_db  # noqa: E402
from pinzo.models import User  # noqa: E402


@pytest.fixture(autouse=True)
def fresh_db():
    init_db()
    yield
    Base.metadata.drop_all(engine)


@pytest.fixture
def client():
    with TestClient(app, base_url="https://testserver") as c:
        yield c


@pytest.fixture
def make_user():
    def _make(email="ada@example.com", name="Ada"):
        with SessionLocal() as s:
            user = User(email=email, name=name)
            s.add(user)
            s.commit()
            s.refresh(user)
            s.expunge(user)
            return user
    return _make
