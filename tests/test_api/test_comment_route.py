"""End-to-end tests for the /comment endpoint."""

import asyncio
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest
import yaml
from fastapi.testclient import TestClient

from staticomment.api.app import create_app
from staticomment.sync.synchronizer import CloneError

ORIGIN = "https://example.com"
PAGE = "https://example.com/posts/hello/"
HEADERS = {"Origin": ORIGIN}
NOW = 1_700_000_000


def valid_form(**overrides) -> dict:
    form = {
        "name": "Ada",
        "email": "ada@example.com",
        "body": "Great read!",
        "slug": "hello",
        "url": PAGE,
    }
    form.update(overrides)
    return form


def comment_error(response) -> str | None:
    query = parse_qs(urlsplit(response.headers["location"]).query)
    return query.get("comment_error", [None])[0]


@pytest.fixture
def make_client(settings_factory, fake_backend, fake_scanner):
    def _make(backend=None, clock=None, **overrides) -> TestClient:
        settings = settings_factory(**overrides)
        app = create_app(
            settings,
            backend=backend or fake_backend,
            key_scanner=fake_scanner,
            clock=clock,
        )
        return TestClient(app, follow_redirects=False)

    return _make


def comment_files(tmp_path, slug="hello"):
    directory = tmp_path / "repo" / "_data" / "comments" / slug
    return sorted(directory.glob("*.yml")) if directory.exists() else []


class TestPublish:
    def test_success_redirects_to_anchor(self, make_client, fake_backend, tmp_path):
        with make_client() as client:
            response = client.post("/comment", data=valid_form(), headers=HEADERS)

        assert response.status_code == 303
        assert response.headers["location"] == PAGE + "#comment-submitted"

        files = comment_files(tmp_path)
        assert len(files) == 1
        record = yaml.safe_load(files[0].read_text(encoding="utf-8"))
        assert record["name"] == "Ada"
        assert record["email"] == "ada@example.com"
        assert record["body"] == "Great read!"
        assert record["slug"] == "hello"

        assert fake_backend.ops() == ["clone", "config", "pull", "add", "commit", "push"]
        # The whole comments root is staged so earlier leftovers go out too
        assert fake_backend.calls[3][2] == "_data/comments"

    def test_existing_query_is_preserved_on_success(self, make_client):
        with make_client() as client:
            response = client.post(
                "/comment", data=valid_form(url=PAGE + "?lang=en"), headers=HEADERS
            )
        assert response.headers["location"] == PAGE + "?lang=en#comment-submitted"

    def test_push_retried_after_conflict(self, make_client, fake_backend):
        fake_backend.fail("push", times=2)
        with make_client() as client:
            response = client.post("/comment", data=valid_form(), headers=HEADERS)

        assert response.headers["location"].endswith("#comment-submitted")
        assert fake_backend.count("push") == 3

    def test_publish_failure_redirects_with_error(self, make_client, fake_backend, tmp_path):
        fake_backend.fail("push")
        with make_client() as client:
            response = client.post("/comment", data=valid_form(), headers=HEADERS)

        assert response.status_code == 303
        assert comment_error(response) == "Failed to publish comment"
        assert fake_backend.count("push") == 3
        # The record stays in the working copy for the next successful push
        assert len(comment_files(tmp_path)) == 1

    def test_write_failure_redirects_with_error(self, make_client, fake_backend, tmp_path):
        with make_client() as client:
            blocker = tmp_path / "repo" / "_data" / "comments" / "hello"
            blocker.parent.mkdir(parents=True)
            blocker.write_text("not a directory")
            response = client.post("/comment", data=valid_form(), headers=HEADERS)

        assert comment_error(response) == "Failed to save comment"
        assert fake_backend.count("commit") == 0


class TestRejections:
    @pytest.mark.parametrize("method", ["get", "put", "delete"])
    def test_wrong_method(self, make_client, method):
        with make_client() as client:
            response = client.request(method.upper(), "/comment", headers=HEADERS)
        assert response.status_code == 405
        assert response.text == "Method not allowed"
        assert response.headers["content-type"].startswith("text/plain")

    def test_foreign_origin(self, make_client, fake_backend):
        with make_client() as client:
            response = client.post(
                "/comment", data=valid_form(), headers={"Origin": "https://evil.test"}
            )
        assert response.status_code == 403
        assert "location" not in response.headers
        assert fake_backend.count("add") == 0

    def test_foreign_redirect_url(self, make_client):
        with make_client() as client:
            response = client.post(
                "/comment", data=valid_form(url="https://evil.test/"), headers=HEADERS
            )
        assert response.status_code == 403

    def test_missing_field_redirects(self, make_client, tmp_path):
        with make_client() as client:
            response = client.post("/comment", data=valid_form(body=""), headers=HEADERS)
        assert response.status_code == 303
        assert comment_error(response) == "Missing required fields (name, body, slug, url)"
        assert response.headers["location"].startswith(PAGE + "?")
        assert comment_files(tmp_path) == []

    def test_missing_url_is_plain_400(self, make_client):
        form = valid_form()
        del form["url"]
        with make_client() as client:
            response = client.post("/comment", data=form, headers=HEADERS)
        assert response.status_code == 400
        assert response.text == "Missing required fields (name, body, slug, url)"

    def test_path_traversal_slug(self, make_client, tmp_path):
        with make_client() as client:
            response = client.post("/comment", data=valid_form(slug="../../etc"), headers=HEADERS)
        assert comment_error(response) == "Invalid slug"
        assert not (tmp_path / "etc").exists()

    def test_honeypot(self, make_client, fake_backend):
        with make_client() as client:
            response = client.post(
                "/comment", data=valid_form(website="http://spam.test"), headers=HEADERS
            )
        assert comment_error(response) == "Comment rejected"
        assert fake_backend.count("commit") == 0

    def test_submitted_too_fast(self, make_client):
        with make_client(clock=lambda: NOW, min_submit_time=5) as client:
            fast = client.post(
                "/comment", data=valid_form(_timestamp=str(NOW - 2)), headers=HEADERS
            )
            slow = client.post(
                "/comment", data=valid_form(_timestamp=str(NOW - 60)), headers=HEADERS
            )
        assert comment_error(fast) == "Comment rejected"
        assert slow.headers["location"].endswith("#comment-submitted")

    def test_rate_limited(self, make_client):
        with make_client(rate_limit_max=2) as client:
            responses = [
                client.post("/comment", data=valid_form(), headers=HEADERS) for _ in range(3)
            ]
        assert [comment_error(r) for r in responses[:2]] == [None, None]
        assert comment_error(responses[2]) == "Too many comments, please try again later"

    def test_oversized_request(self, make_client):
        with make_client(max_request_bytes=256) as client:
            response = client.post(
                "/comment", data=valid_form(body="x" * 1000), headers=HEADERS
            )
        assert response.status_code == 400

    def test_post_must_exist(self, make_client, tmp_path):
        with make_client(posts_path="_posts") as client:
            posts = tmp_path / "repo" / "_posts"
            posts.mkdir()
            missing = client.post("/comment", data=valid_form(), headers=HEADERS)
            (posts / "2024-01-01-hello.md").write_text("---\ntitle: Hello\n---\n")
            found = client.post("/comment", data=valid_form(), headers=HEADERS)

        assert comment_error(missing) == "Post not found"
        assert found.headers["location"].endswith("#comment-submitted")


class TestStartup:
    def test_clone_failure_aborts_startup(self, make_client, fake_backend):
        fake_backend.fail("clone")
        with pytest.raises(CloneError):
            with make_client():
                pass

    def test_request_id_echoed(self, make_client):
        with make_client() as client:
            response = client.get("/health", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_simultaneous_submissions_publish_separately(
        self, settings_factory, backend_factory, fake_scanner, tmp_path
    ):
        backend = backend_factory(delay=0.01)
        app = create_app(settings_factory(), backend=backend, key_scanner=fake_scanner)
        await app.state.components.synchronizer.clone()

        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
            responses = await asyncio.gather(
                client.post("/comment", data=valid_form(name="Ada"), headers=HEADERS),
                client.post("/comment", data=valid_form(name="Grace"), headers=HEADERS),
            )

        assert all(r.headers["location"].endswith("#comment-submitted") for r in responses)
        files = comment_files(tmp_path)
        assert len(files) == 2
        names = {yaml.safe_load(f.read_text(encoding="utf-8"))["name"] for f in files}
        assert names == {"Ada", "Grace"}
        assert backend.max_in_flight == 1
        assert backend.count("commit") == 2

    @pytest.mark.asyncio
    async def test_timed_out_request_still_publishes(
        self, settings_factory, backend_factory, fake_scanner
    ):
        backend = backend_factory(delay=0.05)
        app = create_app(
            settings_factory(request_timeout_seconds=0.1),
            backend=backend,
            key_scanner=fake_scanner,
        )
        await app.state.components.synchronizer.clone()
        backend.calls.clear()

        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
            response = await client.post("/comment", data=valid_form(), headers=HEADERS)

        assert response.status_code == 504
        await asyncio.sleep(0.5)
        assert backend.ops() == ["pull", "add", "commit", "push"]
