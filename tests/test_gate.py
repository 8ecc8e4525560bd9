"""Tests for classification gating and the access audit trail."""

import logging

import pytest

from ckb.classification.audit import AuditSink
from ckb.classification.gate import ACCESS_DENIED_MESSAGE, ClassificationGate, placeholder_keys
from ckb.errors import InsufficientClearance, NotFound, ValidationError
from ckb.models import Article, ArticleRef, ClientInfo, ContentSecret, Identity, SecretRequest
from ckb.storage.memory import MemoryGraphStore

CONTENT = "Door code: {{SECRET:door}}. Again: {{SECRET:door}}. Wifi: {{SECRET:wifi}} {{SECRET:ghost}}"


def _setup(article_level=1):
    store = MemoryGraphStore()
    article = Article(
        source_type="doc",
        id="office",
        title="Office",
        full_path="office",
        classification_level=article_level,
        content=CONTENT,
        status="published",
    )
    store.put_article(article)
    store.add_secrets([
        ContentSecret(article=article.ref, key="door", classification_level=4, content="4411"),
        ContentSecret(article=article.ref, key="wifi", classification_level=2, content="hunter2",
                      description="Guest network"),
        ContentSecret(article=article.ref, key="unused", classification_level=1, content="never shown"),
    ])
    audit = AuditSink(store)
    return store, audit, ClassificationGate(store, audit), article


def _who(level, requester="alice"):
    return Identity(requester_id=requester, clearance_level=level)


def test_placeholder_keys_first_appearance_order():
    assert placeholder_keys(CONTENT) == ["door", "wifi", "ghost"]
    assert placeholder_keys("") == []


def test_denied_secret_is_logged():
    store, audit, gate, article = _setup()

    processed = gate.read(article.ref, _who(2), ClientInfo(ip_address="10.0.0.1", user_agent="pytest"))
    audit.close()

    assert processed.content == CONTENT
    assert processed.user_classification == 2
    door = processed.secret_mappings[0]
    assert door.secret_key == "door"
    assert door.granted_access is False
    assert door.revealed_content is None
    assert door.denied_message == ACCESS_DENIED_MESSAGE

    log = [e for e in store.list_access_log(article.ref) if e.secret_key == "door"]
    assert len(log) == 1
    assert log[0].granted is False
    assert log[0].required_level == 4
    assert log[0].user_level == 2
    assert log[0].requester_id == "alice"
    assert log[0].ip_address == "10.0.0.1"


def test_one_mapping_per_referenced_secret():
    store, audit, gate, article = _setup()

    processed = gate.read(article.ref, _who(2))
    audit.close()

    assert [m.secret_key for m in processed.secret_mappings] == ["door", "wifi"]
    wifi = processed.secret_mappings[1]
    assert wifi.granted_access is True
    assert wifi.revealed_content == "hunter2"
    assert wifi.description == "Guest network"
    assert len(store.list_access_log(article.ref)) == 2


def test_granted_iff_clearance_covers_level():
    for level in range(1, 6):
        store, audit, gate, article = _setup()
        processed = gate.read(article.ref, _who(level))
        audit.close()
        for mapping in processed.secret_mappings:
            assert mapping.granted_access == (level >= mapping.classification_level)
            assert (mapping.revealed_content is not None) == mapping.granted_access


def test_article_above_clearance():
    store, audit, gate, article = _setup(article_level=3)
    with pytest.raises(InsufficientClearance):
        gate.read(article.ref, _who(2))
    audit.close()
    assert store.list_access_log() == []


def test_missing_article():
    _, audit, gate, _ = _setup()
    with pytest.raises(NotFound):
        gate.read(ArticleRef("doc", "nope"), _who(5))
    audit.close()


def test_create_secret_above_clearance_writes_nothing():
    store, audit, gate, article = _setup()
    requests = [
        SecretRequest(key="ok", classification_level=2, content="fine"),
        SecretRequest(key="too-high", classification_level=4, content="nope"),
    ]

    with pytest.raises(InsufficientClearance):
        gate.create_secrets(article.ref, requests, _who(3))
    audit.close()

    keys = [s.key for s in store.get_secrets(article.ref)]
    assert "ok" not in keys
    assert "too-high" not in keys


def test_create_secrets_validation():
    store, audit, gate, article = _setup()
    bad_batches = [
        [SecretRequest(key="", classification_level=1, content="x")],
        [SecretRequest(key="bad key", classification_level=1, content="x")],
        [SecretRequest(key="x", classification_level=0, content="x")],
        [SecretRequest(key="x", classification_level=6, content="x")],
        [SecretRequest(key="x", classification_level=1, content="a"),
         SecretRequest(key="x", classification_level=1, content="b")],
        [SecretRequest(key="door", classification_level=1, content="dup")],
        [],
    ]
    for batch in bad_batches:
        with pytest.raises(ValidationError):
            gate.create_secrets(article.ref, batch, _who(5))
    audit.close()
    assert [s.key for s in store.get_secrets(article.ref)] == ["door", "unused", "wifi"]


def test_create_secrets():
    store, audit, gate, article = _setup()
    created = gate.create_secrets(
        article.ref,
        [SecretRequest(key="alarm", classification_level=3, content="1234", description="Alarm")],
        _who(3, requester="bob"),
    )
    audit.close()

    assert [s.key for s in created] == ["alarm"]
    stored = {s.key: s for s in store.get_secrets(article.ref)}
    assert stored["alarm"].created_by == "bob"
    assert stored["alarm"].classification_level == 3


class _BrokenLogStore(MemoryGraphStore):
    def append_access_log(self, entry):
        raise RuntimeError("audit table unavailable")


def test_audit_failure_does_not_fail_read(caplog):
    store = _BrokenLogStore()
    article = Article(source_type="doc", id="x", title="X", full_path="x",
                      classification_level=1, content="{{SECRET:k}}")
    store.put_article(article)
    store.add_secrets([ContentSecret(article=article.ref, key="k", classification_level=1, content="v")])
    audit = AuditSink(store)
    gate = ClassificationGate(store, audit)

    with caplog.at_level(logging.ERROR, logger="ckb.audit"):
        processed = gate.read(article.ref, _who(1))
        audit.close()

    assert processed.secret_mappings[0].revealed_content == "v"
    assert any(r.name == "ckb.audit" and "Failed to write access log" in r.getMessage() for r in caplog.records)


def test_read_after_audit_close_still_succeeds(caplog):
    store, audit, gate, article = _setup()
    audit.close()

    with caplog.at_level(logging.ERROR, logger="ckb.audit"):
        processed = gate.read(article.ref, _who(4))

    assert processed.secret_mappings[0].revealed_content == "4411"
    assert store.list_access_log() == []
    assert any(r.name == "ckb.audit" and "Dropped access log" in r.getMessage() for r in caplog.records)
