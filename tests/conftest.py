import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture
def temp_db(monkeypatch, tmp_path):
    import db

    db_path = tmp_path / "test.db"
    monkeypatch.setattr(db, "DB_PATH", str(db_path))

    # Fresh pool per test so no connection points at a previous database
    monkeypatch.setattr(db, "_pool", db.SQLiteConnectionPool(str(db_path), max_connections=10))
    db.init()
    return str(db_path)


@pytest.fixture
def config_store(tmp_path):
    from thresholds import ThresholdConfigStore

    store = ThresholdConfigStore(tmp_path / "thresholds.json")
    store.ensure_default()
    return store


@pytest.fixture
def api(monkeypatch, temp_db, config_store):
    import app

    monkeypatch.setattr(app, "CONFIG_STORE", config_store)
    return app


@pytest.fixture
def seed_rows(temp_db):
    """Return a helper that writes raw rows straight into one source set."""
    import db

    def _seed(source, *rows):
        with db.transaction() as con:
            for row in rows:
                db.write_source_row(con, source, row)

    return _seed
