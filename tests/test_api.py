"""End-to-end tests for the HTTP API."""

from __future__ import annotations

import json
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from fastapi.testclient import TestClient

from auth import GUEST_COOKIE
from main import create_app


def _signup(client, username="alice", password="secret1"):
    return client.post("/api/signup", json={"username": username, "password": password})


class TestVideoList:
    def test_empty_feed(self, client):
        resp = client.get("/api/videos")
        assert resp.status_code == 200
        assert resp.json() == {"videos": []}

    def test_feed_lists_directory_videos(self, client, add_video):
        add_video("old.mp4", mtime=1_600_000_000)
        add_video("new.webm", mtime=1_700_000_000)
        videos = client.get("/api/videos").json()["videos"]
        assert [v["id"] for v in videos] == ["new.webm", "old.mp4"]
        assert videos[0] == {
            "id": "new.webm",
            "title": "new",
            "url": "/videos/new.webm",
            "posterUrl": None,
            "views": 0,
            "likes": 0,
            "dislikes": 0,
            "commentsCount": 0,
            "uploadedAt": "2023-11-14T22:13:20Z",
        }

    def test_deleted_file_disappears_with_its_metadata(self, client, add_video):
        path = add_video("a.mp4")
        client.get("/api/videos")
        client.post("/api/videos/a.mp4/view")
        path.unlink()
        assert client.get("/api/videos").json()["videos"] == []
        add_video("a.mp4")
        (video,) = client.get("/api/videos").json()["videos"]
        assert video["views"] == 0

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}


class TestViews:
    def test_view_increments(self, client, add_video):
        add_video("a.mp4")
        assert client.post("/api/videos/a.mp4/view").json() == {"views": 1}
        assert client.post("/api/videos/a.mp4/view").json() == {"views": 2}

    def test_unknown_video_is_404(self, client):
        resp = client.post("/api/videos/ghost.mp4/view")
        assert resp.status_code == 404
        assert resp.json() == {"detail": "Video not found"}

    def test_views_survive_restart(self, settings, add_video):
        add_video("a.mp4")
        with TestClient(create_app(settings)) as c:
            c.post("/api/videos/a.mp4/view")
        with TestClient(create_app(settings)) as c:
            (video,) = c.get("/api/videos").json()["videos"]
        assert video["views"] == 1
        on_disk = json.loads(settings.db_path.read_text())
        assert on_disk["videos"]["a.mp4"]["views"] == 1

    def test_damaged_counter_does_not_wipe_accounts(self, settings, add_video):
        add_video("a.mp4")
        with TestClient(create_app(settings)) as c:
            _signup(c)
        doc = json.loads(settings.db_path.read_text())
        doc["videos"]["a.mp4"] = {"views": None, "likes": 2}
        settings.db_path.write_text(json.dumps(doc))

        with TestClient(create_app(settings)) as c:
            (video,) = c.get("/api/videos").json()["videos"]
            resp = c.post("/api/login", json={"username": "alice", "password": "secret1"})
        assert resp.status_code == 200
        assert (video["views"], video["likes"]) == (0, 2)
        assert [u["username"] for u in json.loads(settings.db_path.read_text())["users"]] == ["alice"]


class TestReactions:
    def test_guest_like_sets_cookie(self, client, add_video):
        add_video("a.mp4")
        resp = client.post("/api/videos/a.mp4/react", json={"type": "like"})
        assert resp.status_code == 200
        assert resp.json() == {"likes": 1, "dislikes": 0}
        assert GUEST_COOKIE in resp.cookies

    def test_same_guest_like_twice_counts_once(self, client, add_video):
        add_video("a.mp4")
        client.post("/api/videos/a.mp4/react", json={"type": "like"})
        resp = client.post("/api/videos/a.mp4/react", json={"type": "like"})
        assert resp.json() == {"likes": 1, "dislikes": 0}

    def test_switching_reaction(self, client, add_video):
        add_video("a.mp4")
        client.post("/api/videos/a.mp4/react", json={"type": "like"})
        resp = client.post("/api/videos/a.mp4/react", json={"type": "dislike"})
        assert resp.json() == {"likes": 0, "dislikes": 1}

    def test_distinct_guests_count_separately(self, client, add_video):
        add_video("a.mp4")
        client.post("/api/videos/a.mp4/react", json={"type": "like"})
        client.cookies.clear()
        resp = client.post("/api/videos/a.mp4/react", json={"type": "like"})
        assert resp.json() == {"likes": 2, "dislikes": 0}

    def test_logged_in_user_is_keyed_by_user_id(self, client, settings, add_video):
        add_video("a.mp4")
        user_id = _signup(client).json()["user"]["id"]
        client.post("/api/videos/a.mp4/react", json={"type": "dislike"})
        on_disk = json.loads(settings.db_path.read_text())
        assert on_disk["reactions"]["a.mp4"] == {user_id: "dislike"}

    def test_invalid_type_is_400(self, client, add_video):
        add_video("a.mp4")
        resp = client.post("/api/videos/a.mp4/react", json={"type": "love"})
        assert resp.status_code == 400

    def test_missing_body_is_400(self, client, add_video):
        add_video("a.mp4")
        assert client.post("/api/videos/a.mp4/react").status_code == 400

    def test_unknown_video_is_404(self, client):
        resp = client.post("/api/videos/ghost.mp4/react", json={"type": "like"})
        assert resp.status_code == 404


class TestComments:
    def test_requires_login(self, client, add_video):
        add_video("a.mp4")
        resp = client.post("/api/videos/a.mp4/comments", json={"text": "hi"})
        assert resp.status_code == 401

    def test_add_and_list(self, client, add_video):
        add_video("a.mp4")
        _signup(client)
        resp = client.post("/api/videos/a.mp4/comments", json={"text": "  great clip  "})
        assert resp.status_code == 201
        comment = resp.json()["comment"]
        assert comment["text"] == "great clip"
        assert comment["username"] == "alice"
        assert set(comment) == {"id", "userId", "username", "text", "createdAt"}

        client.post("/api/videos/a.mp4/comments", json={"text": "second"})
        comments = client.get("/api/videos/a.mp4/comments").json()["comments"]
        assert [c["text"] for c in comments] == ["great clip", "second"]
        (video,) = client.get("/api/videos").json()["videos"]
        assert video["commentsCount"] == 2

    def test_long_text_is_truncated(self, client, add_video):
        add_video("a.mp4")
        _signup(client)
        resp = client.post("/api/videos/a.mp4/comments", json={"text": "x" * 700})
        assert len(resp.json()["comment"]["text"]) == 500

    def test_empty_text_is_400(self, client, add_video):
        add_video("a.mp4")
        _signup(client)
        resp = client.post("/api/videos/a.mp4/comments", json={"text": "   "})
        assert resp.status_code == 400
        assert resp.json() == {"detail": "Comment cannot be empty"}

    def test_unknown_video(self, client):
        assert client.get("/api/videos/ghost.mp4/comments").status_code == 404
        _signup(client)
        assert client.post("/api/videos/ghost.mp4/comments", json={"text": "hi"}).status_code == 404

    def test_list_for_fresh_video_is_empty(self, client, add_video):
        add_video("a.mp4")
        assert client.get("/api/videos/a.mp4/comments").json() == {"comments": []}


class TestAccounts:
    def test_signup_logs_in(self, client):
        resp = _signup(client)
        assert resp.status_code == 200
        user = resp.json()["user"]
        assert user["username"] == "alice"
        assert user["profilePicUrl"] is None
        assert "passwordHash" not in user
        assert client.get("/api/me").json() == {"user": user}

    def test_me_without_session(self, client):
        assert client.get("/api/me").json() == {"user": None}

    def test_duplicate_username_is_case_insensitive(self, client):
        _signup(client)
        assert _signup(client, username="ALICE").status_code == 409

    def test_validation(self, client):
        assert client.post("/api/signup", json={}).status_code == 400
        assert _signup(client, username="al").status_code == 400
        assert _signup(client, password="12345").status_code == 400

    def test_logout_then_login(self, client):
        _signup(client)
        assert client.post("/api/logout").status_code == 204
        assert client.get("/api/me").json() == {"user": None}
        resp = client.post("/api/login", json={"username": "Alice", "password": "secret1"})
        assert resp.status_code == 200
        assert client.get("/api/me").json()["user"]["username"] == "alice"

    def test_bad_credentials(self, client):
        _signup(client)
        client.post("/api/logout")
        resp = client.post("/api/login", json={"username": "alice", "password": "wrong!"})
        assert resp.status_code == 401
        assert client.post("/api/login", json={"username": "bob", "password": "x"}).status_code == 401

    def test_password_is_hashed_on_disk(self, client, settings):
        _signup(client)
        stored = json.loads(settings.db_path.read_text())["users"][0]
        assert stored["passwordHash"] != "secret1"
        assert stored["passwordHash"].startswith("$2")


class TestProfilePicture:
    def test_upload_and_serve(self, client):
        user_id = _signup(client).json()["user"]["id"]
        resp = client.post("/api/profile-picture", files={"file": ("Me.PNG", b"\x89PNG-data", "image/png")})
        assert resp.status_code == 200
        url = resp.json()["user"]["profilePicUrl"]
        assert url == f"/profile-pics/{user_id}.png"
        assert client.get(url).content == b"\x89PNG-data"
        assert client.get("/api/me").json()["user"]["profilePicUrl"] == url

    def test_requires_login(self, client):
        resp = client.post("/api/profile-picture", files={"file": ("me.png", b"x", "image/png")})
        assert resp.status_code == 401

    def test_rejects_non_images(self, client):
        _signup(client)
        resp = client.post("/api/profile-picture", files={"file": ("me.txt", b"x", "text/plain")})
        assert resp.status_code == 400

    def test_missing_file(self, client):
        _signup(client)
        assert client.post("/api/profile-picture").status_code == 400

    def test_rejects_oversized_upload(self, client, settings):
        _signup(client)
        big = b"0" * (settings.max_upload_bytes + 1)
        resp = client.post("/api/profile-picture", files={"file": ("me.png", big, "image/png")})
        assert resp.status_code == 413
        assert list(settings.profile_pics_dir.iterdir()) == []


class TestStaticCatalogDeployment:
    def test_feed_and_counters_for_remote_videos(self, settings):
        catalog_file = Path(__file__).resolve().parent.parent / "catalog.example.json"
        static = settings.model_copy(update={"catalog_file": catalog_file})
        with TestClient(create_app(static)) as c:
            videos = c.get("/api/videos").json()["videos"]
            assert [v["title"] for v in videos] == [
                "Cloudflare Stream: Edge Delivery",
                "Cloudflare Stream: Platform Walkthrough",
                "Cloudflare Stream: Launch Deck",
            ]
            assert videos[0]["posterUrl"].startswith("https://")
            vid = videos[0]["id"]
            assert c.post(f"/api/videos/{vid}/view").json() == {"views": 1}
            assert c.get(f"/videos/{vid}").status_code == 404


class TestConcurrency:
    THREADS = 8
    ROUNDS = 10

    def _run(self, fn, args):
        with ThreadPoolExecutor(max_workers=self.THREADS) as pool:
            return list(pool.map(fn, args))

    def test_parallel_views_are_all_counted(self, client, settings, add_video):
        add_video("a.mp4")

        def view(_):
            for _ in range(self.ROUNDS):
                assert client.post("/api/videos/a.mp4/view").status_code == 200

        self._run(view, range(self.THREADS))
        expected = self.THREADS * self.ROUNDS
        (video,) = client.get("/api/videos").json()["videos"]
        assert video["views"] == expected
        assert json.loads(settings.db_path.read_text())["videos"]["a.mp4"]["views"] == expected

    def test_parallel_reactions_match_ledger(self, client, settings, add_video):
        add_video("a.mp4")

        def react(guest):
            cookie = {"Cookie": f"{GUEST_COOKIE}=guest-{guest}"}
            for i in range(self.ROUNDS):
                kind = "like" if (guest + i) % 2 else "dislike"
                resp = client.post("/api/videos/a.mp4/react", json={"type": kind}, headers=cookie)
                assert resp.status_code == 200

        self._run(react, range(self.THREADS))
        on_disk = json.loads(settings.db_path.read_text())
        ledger = list(on_disk["reactions"]["a.mp4"].values())
        meta = on_disk["videos"]["a.mp4"]
        assert len(ledger) == self.THREADS
        assert meta["likes"] == ledger.count("like")
        assert meta["dislikes"] == ledger.count("dislike")

    def test_overlapping_ranges_return_exact_slices(self, client, add_video):
        content = bytes((i * 7) % 256 for i in range(20_000))
        add_video("big.mp4", content=content)
        windows = [(i * 1_500, i * 1_500 + 4_999) for i in range(self.THREADS)]

        def fetch(window):
            start, end = window
            resp = client.get("/videos/big.mp4", headers={"Range": f"bytes={start}-{end}"})
            assert resp.status_code == 206
            assert resp.headers["content-range"] == f"bytes {start}-{end}/{len(content)}"
            return resp.content

        bodies = self._run(fetch, windows)
        for (start, end), body in zip(windows, bodies):
            assert body == content[start : end + 1]
