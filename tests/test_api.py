import pytest
from fastapi.testclient import TestClient

from app.database import get_db
from app.errors import RateLimitedError, TransportError
from app.services.backfill import persist_page
from app.services.synchronizer import RepositorySynchronizer
from main import app
from tests.conftest import RecordingSupervisor, make_commit


@pytest.fixture
def synchronizer(provider, session_factory, settings):
    return RepositorySynchronizer(provider, session_factory, settings, RecordingSupervisor())


@pytest.fixture
def client(session_factory, synchronizer):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.state.synchronizer = synchronizer
    yield TestClient(app)
    app.dependency_overrides.clear()
    del app.state.synchronizer


def test_health_check(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_register_repository(client):
    response = client.post("/api/v1/repository", json={"name": "octo/hello"})

    assert response.status_code == 201
    body = response.json()
    assert body["name"] == "octo/hello"
    assert body["sync_status"] == "backfilling"
    assert body["id"]

    listed = client.get("/api/v1/repositories").json()
    assert [r["id"] for r in listed] == [body["id"]]

    fetched = client.get(f"/api/v1/repository/{body['id']}")
    assert fetched.status_code == 200
    assert fetched.json()["name"] == "octo/hello"


@pytest.mark.parametrize("name", ["octo", "octo/hello/extra"])
def test_register_invalid_name(client, name):
    response = client.post("/api/v1/repository", json={"name": name})
    assert response.status_code == 400
    assert "owner/repositoryName" in response.json()["detail"]


def test_register_twice(client):
    client.post("/api/v1/repository", json={"name": "octo/hello"})
    response = client.post("/api/v1/repository", json={"name": "octo/hello"})
    assert response.status_code == 400
    assert "already added" in response.json()["detail"]


@pytest.mark.parametrize("error, status", [
    (RateLimitedError("rate limit exceeded"), 403),
    (TransportError("connection reset"), 502),
])
def test_register_provider_failures(client, provider, error, status):
    provider.metadata_error = error
    response = client.post("/api/v1/repository", json={"name": "octo/hello"})
    assert response.status_code == status


def test_register_requires_name(client):
    assert client.post("/api/v1/repository", json={}).status_code == 422


def test_unknown_repository(client):
    assert client.get("/api/v1/repository/nope").status_code == 404
    assert client.get("/api/v1/repository/nope/status").status_code == 404
    assert client.get("/api/v1/repos/nope/commits").status_code == 404
    assert client.get("/api/v1/repos/nope/top-authors").status_code == 404


def test_repository_status(client, add_repository):
    repository = add_repository(last_fetched_page=2, last_fetched_commit="abc", is_fetching=True)

    response = client.get(f"/api/v1/repository/{repository.public_id}/status")

    assert response.status_code == 200
    body = response.json()
    assert body["is_fetching"] is True
    assert body["last_fetched_page"] == 2
    assert body["last_fetched_commit"] == "abc"
    assert body["active_tasks"] == []
    assert body["rate_limit"]["remaining"] is None


def test_list_commits(client, add_repository, session_factory):
    repository = add_repository()
    persist_page(session_factory, [make_commit(f"sha{day}", day=day) for day in range(1, 4)])

    response = client.get(
        f"/api/v1/repos/{repository.public_id}/commits", params={"page": 1, "limit": 2}
    )

    assert response.status_code == 200
    body = response.json()
    assert body["repository"] == "octo/hello"
    assert [c["commit_id"] for c in body["commits"]] == ["sha3", "sha2"]
    assert body["page_info"] == {
        "total_count": 3,
        "page": 1,
        "has_next_page": True,
        "count": 2,
    }


def test_list_commits_bad_paging_falls_back(client, add_repository, session_factory):
    repository = add_repository()
    persist_page(session_factory, [make_commit("sha1")])

    response = client.get(
        f"/api/v1/repos/{repository.public_id}/commits",
        params={"page": -1, "limit": 0, "sort": "nonsense", "direction": "up"},
    )

    assert response.status_code == 200
    assert response.json()["page_info"]["page"] == 1
    assert response.json()["page_info"]["count"] == 1


def test_top_authors(client, add_repository, session_factory):
    repository = add_repository()
    persist_page(session_factory, [
        make_commit("sha1", author="bob"),
        make_commit("sha2", author="alice"),
        make_commit("sha3", author="bob"),
    ])

    response = client.get(f"/api/v1/repos/{repository.public_id}/top-authors", params={"limit": 5})

    assert response.status_code == 200
    assert response.json()["authors"] == [
        {"author": "bob", "commit_count": 2},
        {"author": "alice", "commit_count": 1},
    ]


def test_register_race_is_reported_as_duplicate(client, provider, add_repository):
    fetch_metadata = provider.fetch_metadata

    def register_meanwhile(name):
        add_repository(name)
        return fetch_metadata(name)

    provider.fetch_metadata = register_meanwhile

    response = client.post("/api/v1/repository", json={"name": "octo/hello"})

    assert response.status_code == 400
    assert "already added" in response.json()["detail"]
