import json

from typer.testing import CliRunner

from glowfeed.cli import app

runner = CliRunner()

POSTS = [
    {"id": "old", "user_id": "stranger", "created_at": "2024-05-01T00:00:00+00:00"},
    {"id": "fresh", "user_id": "friend", "created_at": "2024-06-01T11:00:00+00:00", "content": "hi"},
]
CONNECTIONS = [{"id": "c1", "user1_id": "me", "user2_id": "friend", "status": "accepted"}]


def test_rank_prints_scores_in_order(tmp_path):
    posts = tmp_path / "posts.json"
    conns = tmp_path / "connections.json"
    posts.write_text(json.dumps(POSTS))
    conns.write_text(json.dumps(CONNECTIONS))

    result = runner.invoke(app, [
        "rank", str(posts), "--connections", str(conns), "--viewer", "me",
        "--now", "2024-06-01T12:00:00+00:00",
    ])

    assert result.exit_code == 0
    assert "159.0" in result.output  # 99 recency + 50 connection + 10 content
    assert result.output.index("fresh") < result.output.index("old")


def test_rank_accepts_cache_dump(tmp_path):
    posts = tmp_path / "prefetched_posts.json"
    posts.write_text(json.dumps({"data": POSTS, "timestamp": 0}))
    result = runner.invoke(app, ["rank", str(posts), "--now", "2024-06-01T12:00:00"])
    assert result.exit_code == 0
    assert "109.0" in result.output


def test_rank_rejects_malformed_posts(tmp_path):
    posts = tmp_path / "posts.json"
    posts.write_text(json.dumps([{"id": "x", "user_id": "u"}]))
    result = runner.invoke(app, ["rank", str(posts)])
    assert result.exit_code == 1
    assert "malformed" in result.output


def test_cache_show_missing_key(monkeypatch, tmp_path):
    monkeypatch.setenv("CACHE_BACKEND", "sqlite")
    monkeypatch.setenv("CACHE_DB_PATH", str(tmp_path / "cache.db"))
    result = runner.invoke(app, ["cache", "show", "posts"])
    assert result.exit_code == 1
    assert "No cache entry" in result.output


def test_cache_clear(monkeypatch, tmp_path):
    monkeypatch.setenv("CACHE_BACKEND", "sqlite")
    monkeypatch.setenv("CACHE_DB_PATH", str(tmp_path / "cache.db"))
    result = runner.invoke(app, ["cache", "clear", "posts", "--user", "me"])
    assert result.exit_code == 0
    assert "Cleared" in result.output


def test_rank_rejects_bad_now(tmp_path):
    posts = tmp_path / "posts.json"
    posts.write_text(json.dumps(POSTS))
    result = runner.invoke(app, ["rank", str(posts), "--now", "yesterday"])
    assert result.exit_code == 1
    assert "ISO timestamp" in result.output


def test_rank_rejects_invalid_json(tmp_path):
    posts = tmp_path / "posts.json"
    posts.write_text("[{not json")
    result = runner.invoke(app, ["rank", str(posts)])
    assert result.exit_code == 1
    assert "invalid JSON" in result.output
