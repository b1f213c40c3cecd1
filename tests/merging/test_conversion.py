from __future__ import annotations

import asyncio
import stat
import sys
import tempfile
from pathlib import Path

import pytest
from playwright.async_api import Error as PlaywrightError

from doc_merge.merging import conversion
from doc_merge.merging.conversion import (
    HTML_TO_DOCX_STAGES,
    ChromiumPrinter,
    ConversionChain,
    SofficeConverter,
    resolve_soffice,
    run_process,
)
from doc_merge.merging.errors import (
    BrowserRenderError,
    ConversionTimeoutError,
    ExternalToolError,
    IntermediateArtifactMissingError,
    ProcessExitError,
    ProcessStartError,
    UnsupportedOutputTypeError,
)
from doc_merge.merging.models import DocumentFormat
from fakes import PDF_BYTES, FakeHtmlPrinter, FakeOfficeConverter

# Stands in for soffice: appends "|<format>" to the source and writes <stem>.<format>.
FAKE_SOFFICE = """\
import pathlib, sys
args = sys.argv[1:]
target = args[args.index("--convert-to") + 1]
outdir = pathlib.Path(args[args.index("--outdir") + 1])
source = pathlib.Path(args[-1])
if target not in {skip!r}:
    (outdir / (source.stem + "." + target)).write_bytes(source.read_bytes() + b"|" + target.encode())
"""


def _fake_soffice(tmp_path: Path, *, skip: tuple[str, ...] = ()) -> str:
    script = tmp_path / "fake_soffice.py"
    script.write_text(FAKE_SOFFICE.format(skip=skip))
    launcher = tmp_path / "soffice"
    launcher.write_text(f'#!/bin/sh\nexec "{sys.executable}" "{script}" "$@"\n')
    launcher.chmod(launcher.stat().st_mode | stat.S_IXUSR)
    return str(launcher)


@pytest.fixture()
def scratch(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    d = tmp_path / "scratch"
    d.mkdir()
    monkeypatch.setattr(tempfile, "tempdir", str(d))
    return d


def test_resolve_soffice_prefers_override_then_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SOFFICE_BIN", "/opt/lo/soffice")

    assert resolve_soffice("/custom/soffice") == "/custom/soffice"
    assert resolve_soffice() == "/opt/lo/soffice"


def test_resolve_soffice_probes_platform_path(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("SOFFICE_BIN", raising=False)
    monkeypatch.setattr(conversion.sys, "platform", "darwin")
    monkeypatch.setattr(conversion.os.path, "exists", lambda p: p == conversion.MAC_SOFFICE)

    assert resolve_soffice() == conversion.MAC_SOFFICE


def test_resolve_soffice_falls_back_to_path_lookup(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("SOFFICE_BIN", raising=False)
    monkeypatch.setattr(conversion.os.path, "exists", lambda p: False)

    assert resolve_soffice() == "soffice"


def test_stage_args_carry_import_filter(tmp_path: Path) -> None:
    first, second = HTML_TO_DOCX_STAGES

    assert first.args(tmp_path) == [
        "--headless",
        "--infilter=HTML (StarWriter)",
        "--convert-to",
        "odt",
        "--outdir",
        str(tmp_path),
        str(tmp_path / "source.html"),
    ]
    assert "--infilter=HTML (StarWriter)" not in second.args(tmp_path)
    assert second.source == first.produces


@pytest.mark.asyncio
async def test_run_process_captures_output(tmp_path: Path) -> None:
    out = await run_process([sys.executable, "-c", "print('hello')"], tmp_path)

    assert out.stdout.strip() == "hello"


@pytest.mark.asyncio
async def test_run_process_nonzero_exit_prefers_stderr(tmp_path: Path) -> None:
    code = "import sys; print('out'); sys.stderr.write('broken filter'); sys.exit(3)"

    with pytest.raises(ProcessExitError) as info:
        await run_process([sys.executable, "-c", code], tmp_path)

    assert info.value.exit_code == 3
    assert "broken filter" in str(info.value)
    assert info.value.stdout.strip() == "out"


@pytest.mark.asyncio
async def test_run_process_nonzero_exit_falls_back_to_stdout(tmp_path: Path) -> None:
    with pytest.raises(ProcessExitError) as info:
        await run_process([sys.executable, "-c", "import sys; print('only stdout'); sys.exit(1)"], tmp_path)

    assert "only stdout" in str(info.value)


@pytest.mark.asyncio
async def test_run_process_start_failure_is_distinct(tmp_path: Path) -> None:
    with pytest.raises(ProcessStartError):
        await run_process([str(tmp_path / "no-such-binary")], tmp_path)


@pytest.mark.asyncio
async def test_run_process_times_out_and_kills(tmp_path: Path) -> None:
    with pytest.raises(ConversionTimeoutError) as info:
        await run_process([sys.executable, "-c", "import time; time.sleep(30)"], tmp_path, timeout=0.5)

    assert info.value.status_code == 504


@pytest.mark.asyncio
async def test_run_process_kills_child_when_cancelled(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    started: list[asyncio.subprocess.Process] = []
    real_exec = asyncio.create_subprocess_exec

    async def _capture(*args: object, **kwargs: object) -> asyncio.subprocess.Process:
        proc = await real_exec(*args, **kwargs)
        started.append(proc)
        return proc

    monkeypatch.setattr(conversion.asyncio, "create_subprocess_exec", _capture)
    task = asyncio.create_task(run_process([sys.executable, "-c", "import time; time.sleep(30)"], tmp_path))
    while not started:
        await asyncio.sleep(0.01)
    await asyncio.sleep(0.1)

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert started[0].returncode is not None


@pytest.mark.asyncio
async def test_html_to_docx_runs_both_stages_and_cleans_up(tmp_path: Path, scratch: Path) -> None:
    converter = SofficeConverter(_fake_soffice(tmp_path))

    out = await converter.html_to_docx(b"<p>x</p>")

    assert out == b"<p>x</p>|odt|docx"
    assert list(scratch.iterdir()) == []


@pytest.mark.asyncio
async def test_docx_to_pdf_is_a_single_stage(tmp_path: Path, scratch: Path) -> None:
    converter = SofficeConverter(_fake_soffice(tmp_path))

    assert await converter.docx_to_pdf(b"PK") == b"PK|pdf"


@pytest.mark.asyncio
async def test_missing_intermediate_fails_fast_with_stage_name(tmp_path: Path, scratch: Path) -> None:
    converter = SofficeConverter(_fake_soffice(tmp_path, skip=("odt",)))

    with pytest.raises(IntermediateArtifactMissingError) as info:
        await converter.html_to_docx(b"<p>x</p>")

    assert info.value.stage == "html-to-odt"
    assert list(scratch.iterdir()) == []


@pytest.mark.asyncio
async def test_cleanup_failure_does_not_mask_result(
    tmp_path: Path, scratch: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    def _fail(path: object) -> None:
        raise OSError("busy")

    monkeypatch.setattr(conversion.shutil, "rmtree", _fail)
    converter = SofficeConverter(_fake_soffice(tmp_path))

    assert await converter.docx_to_pdf(b"PK") == b"PK|pdf"


@pytest.mark.asyncio
async def test_run_stages_reports_missing_binary(tmp_path: Path, scratch: Path) -> None:
    converter = SofficeConverter(str(tmp_path / "missing-soffice"))

    with pytest.raises(ProcessStartError):
        await converter.docx_to_pdf(b"PK")
    assert list(scratch.iterdir()) == []


@pytest.mark.asyncio
async def test_chromium_printer_wraps_browser_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    async def _boom(self: ChromiumPrinter, html: str) -> bytes:
        raise PlaywrightError("Target closed")

    monkeypatch.setattr(ChromiumPrinter, "_print", _boom)

    with pytest.raises(BrowserRenderError) as info:
        await ChromiumPrinter().html_to_pdf(b"<p>x</p>")

    assert "Target closed" in str(info.value)


@pytest.mark.asyncio
async def test_chromium_printer_times_out(monkeypatch: pytest.MonkeyPatch) -> None:
    async def _slow(self: ChromiumPrinter, html: str) -> bytes:
        await asyncio.sleep(10)
        return b""

    monkeypatch.setattr(ChromiumPrinter, "_print", _slow)

    with pytest.raises(ConversionTimeoutError):
        await ChromiumPrinter(timeout=0.1).html_to_pdf(b"<p>x</p>")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("source", "target", "expected"),
    [
        (DocumentFormat.DOCX, DocumentFormat.DOCX, b"input"),
        (DocumentFormat.HTML, DocumentFormat.HTML, b"input"),
        (DocumentFormat.DOCX, DocumentFormat.PDF, PDF_BYTES),
        (DocumentFormat.HTML, DocumentFormat.PDF, PDF_BYTES),
        (DocumentFormat.HTML, DocumentFormat.DOCX, b"PK\x03\x04fake-docx"),
    ],
)
async def test_chain_routes_every_supported_pair(
    source: DocumentFormat, target: DocumentFormat, expected: bytes
) -> None:
    office, printer = FakeOfficeConverter(), FakeHtmlPrinter()
    chain = ConversionChain(office, printer)

    out = await chain.convert(b"input", source, target)

    assert out == expected
    assert chain.supports(source, target)


@pytest.mark.asyncio
async def test_chain_passthrough_does_not_call_engines() -> None:
    office, printer = FakeOfficeConverter(), FakeHtmlPrinter()

    await ConversionChain(office, printer).convert(b"<p/>", DocumentFormat.HTML, DocumentFormat.HTML)

    assert office.calls == [] and printer.calls == []


@pytest.mark.asyncio
async def test_chain_rejects_unknown_route() -> None:
    chain = ConversionChain(FakeOfficeConverter(), FakeHtmlPrinter())

    with pytest.raises(UnsupportedOutputTypeError):
        await chain.convert(b"x", DocumentFormat.DOCX, DocumentFormat.HTML)


@pytest.mark.asyncio
async def test_chain_never_returns_empty_output() -> None:
    chain = ConversionChain(FakeOfficeConverter(pdf_result=b""), FakeHtmlPrinter())

    with pytest.raises(ExternalToolError):
        await chain.convert(b"PK", DocumentFormat.DOCX, DocumentFormat.PDF)
