from __future__ import annotations

from doc_merge.merging.lint import has_print_css, lint_html, lint_html_bytes


def test_clean_template_passes() -> None:
    report = lint_html("<html><body><h1>{{title}}</h1><p>{{client.name}}</p></body></html>")

    assert report.ok
    assert report.errors == []
    assert report.warnings == []


def test_triple_braces_are_rejected() -> None:
    report = lint_html("<p>{{{ body }}}</p>")

    assert not report.ok
    assert "Disallowed {{{ triple braces }}} (unescaped HTML)" in report.errors


def test_script_vectors_are_errors() -> None:
    html = (
        '<script>x()</script><iframe src="/a"></iframe>'
        '<div onclick="go()">x</div><a href="javascript:void(0)">y</a>'
    )

    report = lint_html(html)

    assert "Disallowed <script> tag" in report.errors
    assert "Disallowed <iframe> tag" in report.errors
    assert 'Disallowed attr "onclick" on <div>' in report.errors
    assert "javascript: URL on <a>" in report.errors


def test_remote_references_warn_unless_allowed() -> None:
    html = '<img src="https://cdn.example.com/a.png">'

    assert lint_html(html).warnings == ['Remote ref: src="https://cdn.example.com/a.png"']
    assert lint_html(html).ok
    assert lint_html(html, allow_remote=True).warnings == []


def test_print_css_is_only_checked_on_request() -> None:
    html = "<p>hi</p>"

    assert lint_html(html).warnings == []
    assert lint_html(html, require_print_css=True).warnings == ['No print CSS detected (@page or media="print").']


def test_print_css_detection() -> None:
    assert has_print_css("<style>@page { size: A4 }</style>")
    assert has_print_css('<link rel="stylesheet" media="print" href="p.css">')
    assert not has_print_css("<style>body { color: red }</style>")


def test_lint_bytes_passes_options_through() -> None:
    report = lint_html_bytes(b'<img src="http://x/y.png">', allow_remote=True)

    assert report.warnings == []
