"""Tests for the HTTP API."""

import copy

from fastapi.testclient import TestClient

from ckb.api.app import create_app
from ckb.config import DEFAULT_CONFIG
from ckb.models import Article, ArticleRef, ContentSecret
from ckb.services.container import build_services
from ckb.storage.memory import MemoryGraphStore

WELCOME = (
    "Start at [[Guide]] and read [[docs/secret-plan|the plan]].\n"
    "Door code: {{SECRET:door}}\n"
    "Old link: [[Nowhere]]"
)


def _client():
    config = copy.deepcopy(DEFAULT_CONFIG)
    config["storage_backend"] = "memory"
    services = build_services(config, store=MemoryGraphStore())
    store = services.store

    welcome = Article(source_type="doc", id="welcome", title="Welcome", full_path="docs/welcome",
                      classification_level=1, status="published", content=WELCOME, tags={"intro"})
    store.put_article(welcome)
    store.put_article(Article(source_type="doc", id="guide", title="Guide", full_path="docs/guide",
                              classification_level=1, status="published", tags={"intro"},
                              content="Back to [[docs/welcome]]"))
    store.put_article(Article(source_type="doc", id="plan", title="Secret Plan", full_path="docs/secret-plan",
                              classification_level=4, status="published", content="See [[Guide]]"))
    store.put_article(Article(source_type="git", id="readme", title="Readme", full_path="README",
                              classification_level=1, status="archived"))
    store.add_secrets([ContentSecret(article=welcome.ref, key="door", classification_level=3, content="4411")])
    services.links.index_all()

    return TestClient(create_app(config, services)), services


def _as(level, requester="alice"):
    return {"X-Requester-Id": requester, "X-Clearance-Level": str(level)}


def test_health():
    client, _ = _client()
    r = client.get("/api/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


def test_requires_identity():
    client, _ = _client()
    assert client.get("/api/graph").status_code == 401
    assert client.get("/api/graph", headers={"X-Requester-Id": "a", "X-Clearance-Level": "9"}).status_code == 401
    assert client.get("/api/graph", headers={"X-Requester-Id": "a", "X-Clearance-Level": "high"}).status_code == 401


def test_graph_respects_clearance():
    client, _ = _client()

    low = client.get("/api/graph", headers=_as(2)).json()
    assert sorted(n["id"] for n in low["nodes"]) == ["guide", "welcome"]
    assert len(low["edges"]) == 2
    assert low["stats"]["total_nodes"] == 2

    high = client.get("/api/graph", headers=_as(5)).json()
    assert sorted(n["id"] for n in high["nodes"]) == ["guide", "plan", "welcome"]
    assert len(high["edges"]) == 4
    for edge in high["edges"]:
        assert 0 <= edge["source"] < 3 and 0 <= edge["target"] < 3


def test_graph_filters_and_stats():
    client, _ = _client()
    git = client.get("/api/graph", params={"source_types": "git"}, headers=_as(5)).json()
    assert git["nodes"] == []

    top = client.get("/api/graph", params={"min_classification": 4}, headers=_as(5)).json()
    assert [n["id"] for n in top["nodes"]] == ["plan"]
    assert top["edges"] == []

    stats = client.get("/api/graph/stats", headers=_as(2)).json()
    assert stats["total_nodes"] == 2
    assert stats["total_edges"] == 2
    assert stats["orphans_count"] == 0


def test_neighborhood():
    client, _ = _client()
    r = client.get("/api/graph/article/doc/guide", params={"depth": 1}, headers=_as(2))
    assert r.status_code == 200
    assert sorted(n["id"] for n in r.json()["nodes"]) == ["guide", "welcome"]

    assert client.get("/api/graph/article/doc/plan", headers=_as(2)).status_code == 403
    assert client.get("/api/graph/article/doc/missing", headers=_as(5)).status_code == 404


def test_read_article_with_denied_secret():
    client, services = _client()
    r = client.get("/api/articles/doc/welcome", headers=_as(2))
    assert r.status_code == 200
    body = r.json()
    assert body["content"] == WELCOME
    assert body["user_classification"] == 2
    assert body["secret_mappings"] == [{
        "secret_key": "door",
        "classification_level": 3,
        "has_access": False,
        "revealed_content": None,
        "denied_message": "[Access Denied]",
        "description": None,
    }]

    services.close()
    log = services.store.list_access_log()
    assert len(log) == 1
    assert (log[0].granted, log[0].user_level, log[0].required_level) == (False, 2, 3)
    assert log[0].requester_id == "alice"


def test_read_article_granted():
    client, _ = _client()
    mapping = client.get("/api/articles/doc/welcome", headers=_as(3)).json()["secret_mappings"][0]
    assert mapping["has_access"] is True
    assert mapping["revealed_content"] == "4411"


def test_read_article_errors():
    client, _ = _client()
    assert client.get("/api/articles/doc/plan", headers=_as(2)).status_code == 403
    assert client.get("/api/articles/doc/missing", headers=_as(5)).status_code == 404
    assert client.get("/api/articles/wiki/welcome", headers=_as(5)).status_code == 400


def test_broken_links_hide_classified_targets():
    client, _ = _client()
    low = client.get("/api/articles/doc/welcome/broken-links", headers=_as(2)).json()
    assert [(b["target_path"], b["reason"]) for b in low] == [
        ("docs/secret-plan", "target not found"),
        ("Nowhere", "target not found"),
    ]

    high = client.get("/api/articles/doc/welcome/broken-links", headers=_as(5)).json()
    assert [b["target_path"] for b in high] == ["Nowhere"]


def test_backlinks():
    client, _ = _client()
    low = client.get("/api/articles/doc/guide/backlinks", headers=_as(2)).json()
    assert [b["source"]["id"] for b in low] == ["welcome"]
    assert "Guide" in low[0]["context_snippet"]

    high = client.get("/api/articles/doc/guide/backlinks", headers=_as(5)).json()
    assert sorted(b["source"]["id"] for b in high) == ["plan", "welcome"]


def test_create_secrets():
    client, services = _client()
    payload = {"secrets": [{"secret_key": "alarm", "classification_level": 4, "content": "1234"}]}

    r = client.post("/api/articles/doc/welcome/secrets", json=payload, headers=_as(3))
    assert r.status_code == 403
    assert [s.key for s in services.store.get_secrets(ArticleRef("doc", "welcome"))] == ["door"]

    payload["secrets"][0]["classification_level"] = 2
    r = client.post("/api/articles/doc/welcome/secrets", json=payload, headers=_as(3))
    assert r.status_code == 200
    assert r.json() == {"created": ["alarm"]}

    r = client.post("/api/articles/doc/welcome/secrets", json=payload, headers=_as(3))
    assert r.status_code == 400


def test_recompute_strengths_requires_clearance():
    client, services = _client()
    assert client.post("/api/graph/strengths/recompute", headers=_as(3)).status_code == 403

    r = client.post("/api/graph/strengths/recompute", headers=_as(4))
    assert r.status_code == 200
    assert r.json() == {"success": True, "edge_count": 4}
    assert len(services.store.get_strengths()) == 4


def test_clustering_flow():
    client, _ = _client()
    assert client.get("/api/articles/doc/welcome/cluster", headers=_as(2)).status_code == 404
    assert client.post("/api/graph/clusters/run", json={}, headers=_as(3)).status_code == 403
    assert client.post("/api/graph/clusters/run", json={"algorithm": "louvain"}, headers=_as(5)).status_code == 400

    client.post("/api/graph/strengths/recompute", headers=_as(4))
    r = client.post("/api/graph/clusters/run", json={"algorithm": "label_propagation"}, headers=_as(4))
    assert r.status_code == 200
    run = r.json()
    assert run["success"] is True
    assert run["algorithm"] == "label_propagation"
    assert run["cluster_count"] >= 1

    clusters = client.get("/api/graph/clusters", headers=_as(2)).json()
    assert clusters["algorithm"] == "label_propagation"
    assert clusters["total"] == len(clusters["clusters"])
    for c in clusters["clusters"]:
        assert c["size"] == len(c["members"]) > 0
        assert {m["id"] for m in c["members"]} <= {"guide", "welcome"}
        assert "Secret Plan" not in c["label"]

    r = client.get("/api/articles/doc/welcome/cluster", headers=_as(2))
    assert r.status_code == 200
    body = r.json()
    assert body["article"] == {"source_type": "doc", "id": "welcome"}
    assert "Secret Plan" not in body["cluster_label"]
    assert "welcome" in {m["id"] for m in body["cluster"]["members"]}
