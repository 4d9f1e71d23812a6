from flowengine.utils.interpolate import interpolate, resolve_path

CONTEXT = {
    "source": "rss",
    "items": [{"title": "a"}, {"title": "b"}, {"title": "c"}],
    "tags": ["x", "y"],
    "meta": {"count": 3},
}


def test_single_placeholder_keeps_type():
    assert interpolate("{{meta.count}}", CONTEXT) == 3
    assert interpolate("{{ items.first }}", CONTEXT) == {"title": "a"}
    assert interpolate("{{missing}}", CONTEXT) is None


def test_embedded_placeholders_render_as_text():
    assert interpolate("{{source}}: {{items.length}} new", CONTEXT) == "rss: 3 new"
    assert interpolate("last={{items.last.title}} none={{missing}}", CONTEXT) == "last=c none="


def test_join_helper():
    assert resolve_path("tags.join(, )", CONTEXT) == "x, y"


def test_nested_templates():
    rendered = interpolate({"summary": ["{{source}}", {"n": "{{meta.count}}"}], "flag": True}, CONTEXT)
    assert rendered == {"summary": ["rss", {"n": 3}], "flag": True}
