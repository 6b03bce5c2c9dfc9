from fastapi.testclient import TestClient

from dispatch_elig.eligibility.engine import get_engine
from dispatch_elig.main import app


def test_healthz() -> None:
    client = TestClient(app)
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_readyz_once_engine_is_initialized(repo, make_engine) -> None:
    engine = make_engine(repo)
    app.dependency_overrides[get_engine] = lambda: engine
    try:
        with TestClient(app) as client:
            response = client.get("/readyz")
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 200
    assert response.json() == {"status": "ready"}
    assert repo.closed
