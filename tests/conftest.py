import pytest
import litestmt
from sqlalchemy.dialects import registry

registry.register("sqlite.litestmt", "litestmt_sqlalchemy.dialect", "LitestmtDialect")

@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "test.db")

@pytest.fixture
def conn(db_path):
    c = litestmt.open(db_path)
    yield c
    c.close()

@pytest.fixture
def mem():
    c = litestmt.Connection.open_in_memory()
    yield c
    c.close()
