"""Link extraction and identifier resolution."""

from __future__ import annotations

import pytest

from linkmanager.engine.errors import InvalidIdentifierError
from linkmanager.engine.links import LinkExtractor, find_by_identifier
from linkmanager.engine.types import Identifier

BODY = (
    '<p>Read <a href="https://example.com/guide/" rel="nofollow noopener">the guide</a>, '
    '<a href="/about/">about us</a> and <a href="https://other.org/">elsewhere</a>.</p>'
    '<p><a name="top">no href</a> and <a href="https://example.com/guide/">The  Guide</a></p>'
)


def test_extract_links_classifies_internal_links(engine_config):
    links = LinkExtractor(engine_config).extract_links(BODY)

    assert [link.position for link in links] == [1, 2, 3, 4]
    assert [link.url for link in links] == [
        "https://example.com/guide/",
        "/about/",
        "https://other.org/",
        "https://example.com/guide/",
    ]
    assert [link.is_internal for link in links] == [True, True, False, True]
    assert links[0].anchor_text == "the guide"
    assert links[0].attributes == {"rel": "nofollow noopener"}
    assert links[0].rel_tokens == ["nofollow", "noopener"]


def test_extract_links_on_empty_markup(engine_config):
    assert LinkExtractor(engine_config).extract_links("") == []


def test_is_internal_matches_host_case_insensitively(engine_config):
    extractor = LinkExtractor(engine_config)

    assert extractor.is_internal("HTTPS://EXAMPLE.COM/page/")
    assert extractor.is_internal("/relative/")
    assert not extractor.is_internal("//example.org/page/")
    assert not extractor.is_internal("mailto:someone@example.com")
    assert extractor.absolute_url("/about/") == "https://example.com/about/"


def test_find_by_url_returns_every_exact_match(engine_config):
    extractor = LinkExtractor(engine_config)
    identifier = Identifier(by="url", url="https://example.com/guide/")

    matched = find_by_identifier(BODY, identifier, extractor)
    assert [link.position for link in matched] == [1, 4]


def test_find_by_anchor_counts_normalized_text(engine_config):
    extractor = LinkExtractor(engine_config)

    second = find_by_identifier(BODY, Identifier(by="anchor", anchor_text="the guide", occurrence=2), extractor)
    assert [link.position for link in second] == [4]
    third = find_by_identifier(BODY, Identifier(by="anchor", anchor_text="the guide", occurrence=3), extractor)
    assert third == []


def test_find_by_index(engine_config):
    links = LinkExtractor(engine_config).extract_links(BODY)

    assert find_by_identifier(links, Identifier(by="index", index=3))[0].url == "https://other.org/"
    assert find_by_identifier(links, Identifier(by="index", index=9)) == []


def test_find_by_identifier_needs_extractor_for_markup():
    with pytest.raises(ValueError):
        find_by_identifier("<p></p>", Identifier(by="index", index=1))


def test_identifier_from_dict_accepts_anchor_alias():
    identifier = Identifier.from_dict({"by": "anchor", "anchor": "here", "occurrence": "2"})
    assert identifier == Identifier(by="anchor", anchor_text="here", occurrence=2)
    assert identifier.to_dict() == {"by": "anchor", "anchor_text": "here", "occurrence": 2}


@pytest.mark.parametrize(
    "data",
    [
        None,
        "url",
        {"by": "title"},
        {"by": "url"},
        {"by": "url", "url": "  "},
        {"by": "anchor"},
        {"by": "anchor", "anchor_text": "x", "occurrence": 0},
        {"by": "index", "index": True},
        {"by": "index", "index": "one"},
    ],
)
def test_identifier_from_dict_rejects_malformed_input(data):
    with pytest.raises(InvalidIdentifierError):
        Identifier.from_dict(data)
