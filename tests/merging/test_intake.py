from __future__ import annotations

import pytest

from doc_merge.merging.errors import TemplateLintError, UnsupportedTemplateTypeError
from doc_merge.merging.intake import (
    TemplateIntake,
    content_type_for,
    download_name_for,
    extract_placeholders,
    stored_template_name,
)
from doc_merge.merging.models import DocumentFormat
from doc_merge.merging.service import UPLOADS_PREFIX
from fakes import InMemoryBlobStore, InMemoryTemplateStore, build_docx


@pytest.fixture()
def intake(templates: InMemoryTemplateStore, blobs: InMemoryBlobStore) -> TemplateIntake:
    return TemplateIntake(templates, blobs)


def test_extract_placeholders_dedupes_in_order() -> None:
    text = "{{ b }} {{a}} {{ client.name }} {{b}}"

    assert extract_placeholders(text) == ["b", "a", "client.name"]


def test_extract_placeholders_reports_loop_iterables_not_loop_variables() -> None:
    text = "{%p for row in rows %}{{ row.sku }} {{ row.qty }}{%p endfor %} Total: {{ total }}"

    assert extract_placeholders(text) == ["rows", "total"]


def test_extract_placeholders_ignores_non_placeholders() -> None:
    assert extract_placeholders("{{ a|upper }} {# note #} { single } {{ }}") == []


@pytest.mark.asyncio
async def test_register_docx_discovers_fields_and_stores_bytes(
    intake: TemplateIntake, templates: InMemoryTemplateStore, blobs: InMemoryBlobStore
) -> None:
    content = build_docx("Dear {{ client.name }},", "Amount: {{ total }}", header="{{ company }}")

    profile = await intake.register("Offer Letter.docx", content)

    assert profile.format is DocumentFormat.DOCX
    assert set(profile.fields) == {"client.name", "total", "company"}
    assert profile.stored_name.endswith("-Offer Letter.docx")
    assert blobs.objects[UPLOADS_PREFIX + profile.stored_name] == content
    assert templates.get(profile.template_id).fields == frozenset(profile.fields)


@pytest.mark.asyncio
async def test_register_rejects_broken_docx_template(
    intake: TemplateIntake, templates: InMemoryTemplateStore, blobs: InMemoryBlobStore
) -> None:
    with pytest.raises(TemplateLintError) as info:
        await intake.register("bad.docx", build_docx("Hello {{ name"))

    assert info.value.to_dict()["details"][0]["id"] == "template_syntax"
    assert blobs.objects == {}
    assert templates.records == {}


@pytest.mark.asyncio
async def test_register_checks_docx_signature(intake: TemplateIntake) -> None:
    with pytest.raises(UnsupportedTemplateTypeError):
        await intake.register("fake.docx", b"<html>not a zip</html>")


@pytest.mark.asyncio
async def test_register_rejects_unknown_extension(intake: TemplateIntake) -> None:
    with pytest.raises(UnsupportedTemplateTypeError) as info:
        await intake.register("sheet.xlsx", b"PK\x03\x04")

    assert info.value.status_code == 415


@pytest.mark.asyncio
async def test_register_html_keeps_warnings(intake: TemplateIntake, blobs: InMemoryBlobStore) -> None:
    html = b'<html><body><img src="https://cdn.example.com/logo.png"><h1>{{title}}</h1><p>{{client.name}}</p></body></html>'

    profile = await intake.register("page.html", html)

    assert profile.format is DocumentFormat.HTML
    assert profile.fields == ["title", "client.name"]
    assert profile.warnings == ['Remote ref: src="https://cdn.example.com/logo.png"']
    assert UPLOADS_PREFIX + profile.stored_name in blobs.objects


@pytest.mark.asyncio
async def test_register_rejects_html_with_script(intake: TemplateIntake, blobs: InMemoryBlobStore) -> None:
    with pytest.raises(TemplateLintError) as info:
        await intake.register("page.html", b"<p>{{title}}</p><script>x()</script>")

    assert "Disallowed <script> tag" in info.value.details
    assert blobs.objects == {}


def test_download_name_strips_unique_prefix() -> None:
    assert download_name_for(stored_template_name("Q3 Report.docx")) == "Q3 Report.docx"
    assert download_name_for("1700000000000-legacy.html") == "legacy.html"


def test_content_type_for() -> None:
    assert content_type_for("a.docx") == "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
    assert content_type_for("a.htm") == "text/html"
    assert content_type_for("a.bin") == "application/octet-stream"


@pytest.mark.asyncio
async def test_register_rejects_non_utf8_html(intake: TemplateIntake, blobs: InMemoryBlobStore) -> None:
    with pytest.raises(TemplateLintError) as info:
        await intake.register("latin1.html", "<p>Café {{name}}</p>".encode("latin-1"))

    assert info.value.status_code == 422
    assert blobs.objects == {}
