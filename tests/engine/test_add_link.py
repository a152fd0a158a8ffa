"""Adding links to flat markup."""

from __future__ import annotations

import pytest

from linkmanager.engine.config import load_config
from linkmanager.engine.errors import UnsafeUrlError
from linkmanager.engine.index import build_engine

TARGET = "https://example.com/target"


def test_add_link_wraps_first_occurrence(engine):
    result = engine.add_link("<p>This is some text with anchor here.</p>", "anchor", TARGET)

    assert result.content == f'<p>This is some text with <a href="{TARGET}">anchor</a> here.</p>'
    assert result.links_added == 1
    assert result.skipped == []


def test_add_link_keeps_original_case_and_surrounding_bytes(engine):
    source = "<div class='intro'>\n  <p>ANCHOR text &amp; more</p>\n</div>"
    result = engine.add_link(source, "anchor", TARGET)

    assert result.content == f"<div class='intro'>\n  <p><a href=\"{TARGET}\">ANCHOR</a> text &amp; more</p>\n</div>"


def test_add_link_selects_occurrence(engine):
    source = "<p>one anchor, two anchor, three anchor</p>"

    second = engine.add_link(source, "anchor", TARGET, occurrence=2)
    assert second.content == f'<p>one anchor, two <a href="{TARGET}">anchor</a>, three anchor</p>'

    last = engine.add_link(source, "anchor", TARGET, occurrence="last")
    assert last.content == f'<p>one anchor, two anchor, three <a href="{TARGET}">anchor</a></p>'

    every = engine.add_link(source, "anchor", TARGET, occurrence="all")
    assert every.links_added == 3
    assert every.content.count(f'<a href="{TARGET}">anchor</a>') == 3


def test_add_link_out_of_range_occurrence_changes_nothing(engine):
    source = "<p>just one anchor</p>"
    result = engine.add_link(source, "anchor", TARGET, occurrence=4)

    assert result.content == source
    assert result.links_added == 0
    assert not result.changed


def test_add_link_matches_across_entities(engine):
    result = engine.add_link("<p>Fish &amp; Chips shop</p>", "fish & chips", TARGET)
    assert result.content == f'<p><a href="{TARGET}">Fish &amp; Chips</a> shop</p>'


def test_add_link_skips_linked_occurrences(engine):
    source = '<p><a href="https://example.com/old">anchor</a> and anchor</p>'
    result = engine.add_link(source, "anchor", TARGET, occurrence="all")

    assert result.links_added == 1
    assert [(item.occurrence, item.reason, item.existing_url) for item in result.skipped] == [
        (1, "already_linked", "https://example.com/old"),
    ]
    assert result.content == f'<p><a href="https://example.com/old">anchor</a> and <a href="{TARGET}">anchor</a></p>'


def test_add_link_twice_is_idempotent(engine):
    first = engine.add_link("<p>anchor, anchor</p>", "anchor", TARGET, occurrence="all")
    second = engine.add_link(first.content, "anchor", TARGET, occurrence="all", if_exists="skip")

    assert first.links_added == 2
    assert second.links_added == 0
    assert second.content == first.content
    assert len(second.skipped) == 2


def test_add_link_replace_retargets_existing_link(engine):
    source = '<p><a href="https://example.com/old" class="internal">anchor</a> text</p>'
    result = engine.add_link(source, "anchor", TARGET, attributes={"rel": "nofollow"}, if_exists="replace")

    assert result.links_replaced == 1
    assert result.links_added == 0
    assert [(item.occurrence, item.old_url) for item in result.replaced] == [(1, "https://example.com/old")]
    assert result.content == f'<p><a href="{TARGET}" class="internal" rel="nofollow">anchor</a> text</p>'


def test_add_link_filters_attributes(engine):
    result = engine.add_link(
        "<p>anchor</p>",
        "anchor",
        TARGET,
        attributes={"onclick": "steal()", "target": "_blank", "href": "https://evil.example/"},
    )
    assert result.content == f'<p><a href="{TARGET}" target="_blank">anchor</a></p>'


def test_add_link_never_emits_script_urls(engine):
    with pytest.raises(UnsafeUrlError):
        engine.add_link("<p>anchor</p>", "anchor", "javascript:alert(1)")


def test_add_link_rejects_unknown_policy(engine):
    with pytest.raises(ValueError):
        engine.add_link("<p>anchor</p>", "anchor", TARGET, if_exists="overwrite")


def test_add_link_does_not_touch_comments_or_scripts(engine):
    source = "<!-- anchor --><script>var anchor = 1;</script><p>anchor</p>"
    result = engine.add_link(source, "anchor", TARGET, occurrence="all")

    assert result.links_added == 1
    assert result.content == f'<!-- anchor --><script>var anchor = 1;</script><p><a href="{TARGET}">anchor</a></p>'


def test_add_link_with_default_attributes():
    engine = build_engine(load_config(None, default_link_attributes={"class": "internal-link"}))
    result = engine.add_link("<p>anchor</p>", "anchor", "/target/")
    assert result.content == '<p><a href="/target/" class="internal-link">anchor</a></p>'


def test_add_link_replace_rewrites_nested_links_once(engine):
    source = '<p><a href="/outer">foo <a href="/inner">foo</a> tail</a> end</p>'
    result = engine.add_link(source, "foo", TARGET, occurrence="all", if_exists="replace")

    assert result.links_replaced == 1
    assert result.content == f'<p><a href="{TARGET}">foo <a href="/inner">foo</a> tail</a> end</p>'
    assert [item.old_url for item in result.replaced] == ["/outer"]
