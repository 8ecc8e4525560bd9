"""Tests for wiki-link extraction."""

from ckb.links.extractor import (
    REASON_ARCHIVED,
    REASON_MALFORMED,
    REASON_NOT_FOUND,
    context_snippet,
    extract_links,
)
from ckb.models import Article, ArticleRef


def _article(id, title=None, path=None, status="published"):
    return Article(
        source_type="doc",
        id=id,
        title=title or id.title(),
        full_path=path or f"docs/{id}",
        classification_level=1,
        status=status,
    )


def _resolver(*articles):
    by_path = {a.full_path: a for a in articles}
    by_title = {a.title: a for a in articles}
    return lambda target: by_path.get(target) or by_title.get(target)


def test_extracts_links_in_document_order():
    setup = _article("setup", path="guides/setup")
    diagram = _article("diagram", title="Diagram")
    content = "See [[guides/setup|the setup guide]] and ![[Diagram]]."

    links = list(extract_links(content, _resolver(setup, diagram)))

    assert len(links) == 2
    first, second = links
    assert first.text == "[[guides/setup|the setup guide]]"
    assert first.target_path == "guides/setup"
    assert first.display_text == "the setup guide"
    assert first.link_type == "wiki"
    assert first.start == content.index("[[")
    assert first.end == first.start + len(first.text)
    assert first.target == ArticleRef("doc", "setup")

    assert second.link_type == "embed"
    assert second.display_text == "Diagram"
    assert second.target == ArticleRef("doc", "diagram")
    assert first.start < second.start


def test_iteration_is_restartable():
    occurrences = extract_links("[[a]] then [[b]]", _resolver(_article("a", path="a")))
    assert list(occurrences) == list(occurrences)
    assert len(list(occurrences)) == 2


def test_resolution_is_lazy():
    calls = []

    def resolve(target):
        calls.append(target)
        return None

    occurrences = extract_links("[[x]] [[y]]", resolve)
    assert calls == []
    list(occurrences)
    assert calls == ["x", "y"]


def test_broken_link_reasons():
    old = _article("old", path="old", status="archived")
    content = "[[missing]] [[   ]] [[bad{target}]] [[old]]"

    broken = extract_links(content, _resolver(old)).broken()

    assert [b.broken_reason for b in broken] == [
        REASON_NOT_FOUND,
        REASON_MALFORMED,
        REASON_MALFORMED,
        REASON_ARCHIVED,
    ]
    assert all(b.target is None for b in broken)


def test_title_fallback_and_trimmed_target():
    policy = _article("policy", title="Security Policy", path="sec/policy")
    links = extract_links("Read [[ Security Policy ]] first", _resolver(policy)).resolved()
    assert len(links) == 1
    assert links[0].target_path == "Security Policy"
    assert links[0].target == policy.ref


def test_context_snippet_is_bounded_and_trimmed():
    content = "x" * 100 + "[[a]]" + "y" * 100
    assert context_snippet(content, 100, 105, 50) == "x" * 50 + "[[a]]" + "y" * 50
    assert context_snippet("   [[a]]   ", 3, 8) == "[[a]]"


def test_no_links():
    assert list(extract_links("plain text, no links", lambda t: None)) == []
    assert list(extract_links("", lambda t: None)) == []
