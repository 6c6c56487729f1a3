from sof_orchestrator.db.postgres.pool import _with_connect_timeout


def test_url_dsn_gets_connect_timeout():
    dsn = _with_connect_timeout("postgresql://sof:pw@127.0.0.1:5432/sof")
    assert dsn.startswith("postgresql://sof:pw@127.0.0.1:5432/sof?")
    assert "connect_timeout=" in dsn


def test_existing_timeout_is_kept():
    assert _with_connect_timeout("postgresql://h/db?connect_timeout=9").endswith("connect_timeout=9")
    assert _with_connect_timeout("host=h dbname=db connect_timeout=9") == "host=h dbname=db connect_timeout=9"


def test_keyword_dsn_and_empty():
    assert _with_connect_timeout("host=h dbname=db").startswith("host=h dbname=db connect_timeout=")
    assert _with_connect_timeout("") == ""
