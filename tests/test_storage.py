"""Tests for the memory and SQL graph stores."""

import tempfile
from datetime import datetime, timezone
from pathlib import Path

import pytest

from ckb.config import load_config
from ckb.errors import ValidationError
from ckb.models import (
    AccessLogEntry,
    Article,
    ArticleRef,
    ClusterAssignment,
    ClusterResult,
    ContentSecret,
    GitMetadata,
    LinkStrength,
    StoredLink,
)
from ckb.storage import get_graph_store
from ckb.storage.memory import MemoryGraphStore
from ckb.storage.sql import SQLGraphStore

A = ArticleRef("doc", "a")
B = ArticleRef("doc", "b")
G = ArticleRef("git", "readme")


def _exercise_store(store):
    store.put_article(Article(source_type="doc", id="b", title="Beta", full_path="docs/beta",
                              classification_level=2, tags={"x", "y"}))
    store.put_article(Article(source_type="doc", id="a", title="Alpha", full_path="docs/alpha",
                              classification_level=1, status="published"))
    store.put_article(Article(source_type="git", id="readme", title="Alpha", full_path="README",
                              classification_level=1,
                              metadata=GitMetadata(repository="kb", file_path="README.md")))

    # Articles
    assert [a.ref for a in store.list_articles()] == [A, B, G]
    beta = store.get_article(B)
    assert beta.tags == {"x", "y"}
    assert beta.metadata.source_type == "doc"
    assert store.get_article(G).metadata.repository == "kb"
    assert store.get_article(ArticleRef("doc", "zzz")) is None
    assert store.find_article("doc", "docs/beta").ref == B
    assert store.find_article("doc", "Alpha").ref == A
    assert store.find_article("git", "Alpha").ref == G
    assert store.find_article("doc", "README") is None

    # Secrets: duplicate key rejects the whole batch
    store.add_secrets([ContentSecret(article=A, key="k1", classification_level=3, content="s1")])
    with pytest.raises(ValidationError):
        store.add_secrets([
            ContentSecret(article=A, key="k2", classification_level=1, content="s2"),
            ContentSecret(article=A, key="k1", classification_level=1, content="dup"),
        ])
    assert [s.key for s in store.get_secrets(A)] == ["k1"]
    assert store.get_secrets(B) == []

    # Links
    created = datetime(2024, 1, 1, tzinfo=timezone.utc)
    store.replace_links(A, [
        StoredLink(id="l1", source=A, target=B, link_text="Beta", created_at=created),
        StoredLink(id="l2", source=A, target=B, link_text="again", link_type="embed", created_at=created),
    ])
    store.replace_links(B, [StoredLink(id="l3", source=B, target=A, link_text="Alpha", created_at=created)])
    store.replace_links(A, [StoredLink(id="l4", source=A, target=B, link_text="Beta", created_at=created)])
    assert sorted(link.id for link in store.list_links()) == ["l3", "l4"]

    # Strengths replace wholesale
    store.replace_strengths([
        LinkStrength(link_id="l3", source=B, target=A, normalized_strength=0.2),
        LinkStrength(link_id="l4", source=A, target=B, normalized_strength=0.9, recency_score=1.0),
    ])
    store.replace_strengths([LinkStrength(link_id="l4", source=A, target=B, normalized_strength=0.5)])
    strengths = store.get_strengths()
    assert list(strengths) == ["l4"]
    assert strengths["l4"].normalized_strength == 0.5

    # Clusters per algorithm
    cluster = ClusterResult(cluster_id=0, algorithm="label_propagation", members=[A, B],
                            centrality={A: 1.0, B: 0.5}, density=1.0, label="Cluster: Alpha",
                            representative=A)
    assignments = [
        ClusterAssignment(article=A, algorithm="label_propagation", cluster_id=0,
                          cluster_label="Cluster: Alpha", centrality_score=1.0),
        ClusterAssignment(article=B, algorithm="label_propagation", cluster_id=0,
                          cluster_label="Cluster: Alpha", centrality_score=0.5),
    ]
    store.replace_clusters("label_propagation", [cluster], assignments)
    stored = store.get_clusters("label_propagation")
    assert len(stored) == 1
    assert stored[0].members == [A, B]
    assert stored[0].centrality == {A: 1.0, B: 0.5}
    assert stored[0].representative == A
    assert store.get_clusters("spectral") == []
    assert store.get_assignment(B, "label_propagation").centrality_score == 0.5
    assert store.get_assignment(B, "spectral") is None

    store.replace_clusters("label_propagation", [], [])
    assert store.get_clusters("label_propagation") == []
    assert store.get_assignment(A, "label_propagation") is None

    # Access log
    store.append_access_log(AccessLogEntry(article=A, secret_key="k1", requester_id="u",
                                           user_level=2, required_level=3, granted=False))
    store.append_access_log(AccessLogEntry(article=B, secret_key="k9", requester_id="u",
                                           user_level=2, required_level=1, granted=True))
    log = store.list_access_log(A)
    assert len(log) == 1
    assert log[0].granted is False
    assert log[0].required_level == 3
    assert len(store.list_access_log()) == 2


def test_memory_store():
    _exercise_store(MemoryGraphStore())


def test_sql_store():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = SQLGraphStore(f"sqlite:///{tmpdir}/nested/ckb.db")
        _exercise_store(store)
        assert (Path(tmpdir) / "nested" / "ckb.db").exists()
        store.engine.dispose()


def test_sql_store_in_memory():
    _exercise_store(SQLGraphStore("sqlite://"))


def test_get_graph_store_factory():
    assert isinstance(get_graph_store({"storage_backend": "memory"}), MemoryGraphStore)
    with tempfile.TemporaryDirectory() as tmpdir:
        store = get_graph_store({"storage_backend": "sql", "database_url": f"sqlite:///{tmpdir}/x.db"})
        assert isinstance(store, SQLGraphStore)
        store.engine.dispose()
    with pytest.raises(ValueError):
        get_graph_store({"storage_backend": "neo4j"})


def test_load_config_merges_file_and_env(monkeypatch):
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "config.yaml"
        path.write_text("graph:\n  min_degree: 3\nclustering:\n  n_clusters: 4\n")
        monkeypatch.setenv("CKB_STORAGE_BACKEND", "memory")
        monkeypatch.setenv("CKB_LOG_LEVEL", "debug")
        monkeypatch.delenv("CKB_DATABASE_URL", raising=False)

        cfg = load_config(path)

    assert cfg["graph"]["min_degree"] == 3
    assert cfg["graph"]["hub_percentile"] == 90.0
    assert cfg["clustering"]["n_clusters"] == 4
    assert cfg["clustering"]["default_algorithm"] == "label_propagation"
    assert cfg["storage_backend"] == "memory"
    assert cfg["log_level"] == "DEBUG"
    assert "~" not in cfg["database_url"]
