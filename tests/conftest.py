from __future__ import annotations

from typing import Callable

import pytest

from fakes import (
    FakeHtmlPrinter,
    FakeOfficeConverter,
    InMemoryBlobStore,
    InMemoryJobRepository,
    InMemoryTemplateStore,
    build_docx,
)


@pytest.fixture()
def docx_factory() -> Callable[..., bytes]:
    return build_docx


@pytest.fixture()
def greeting_docx() -> bytes:
    return build_docx("Hello {{ name }}")


@pytest.fixture()
def templates() -> InMemoryTemplateStore:
    return InMemoryTemplateStore()


@pytest.fixture()
def blobs() -> InMemoryBlobStore:
    return InMemoryBlobStore()


@pytest.fixture()
def jobs() -> InMemoryJobRepository:
    return InMemoryJobRepository()


@pytest.fixture()
def office() -> FakeOfficeConverter:
    return FakeOfficeConverter(docx_result=build_docx("converted"))


@pytest.fixture()
def printer() -> FakeHtmlPrinter:
    return FakeHtmlPrinter()
