"""Format conversion for merged documents.

Routes (template format, requested format) pairs to one of:

- passthrough (DOCX -> DOCX, HTML -> HTML)
- DOCX -> PDF through LibreOffice
- HTML -> PDF through headless Chromium (Playwright)
- HTML -> DOCX through LibreOffice, HTML -> ODT -> DOCX

LibreOffice runs as ``soffice --headless`` in a throwaway working directory,
one named stage per invocation, and each stage must leave its artifact
behind before the next one starts.
"""

import asyncio
import logging
import os
import shutil
import sys
import tempfile
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from pathlib import Path

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from .errors import (
    BrowserRenderError,
    ConversionTimeoutError,
    ExternalToolError,
    IntermediateArtifactMissingError,
    ProcessExitError,
    ProcessStartError,
    UnsupportedOutputTypeError,
)
from .interfaces import HtmlPrinter, OfficeConverter
from .models import ALLOWED_OUTPUTS, DocumentFormat

logger = logging.getLogger(__name__)

MAC_SOFFICE = "/Applications/LibreOffice.app/Contents/MacOS/soffice"
WINDOWS_SOFFICE = r"C:\Program Files\LibreOffice\program\soffice.exe"
HTML_WRITER_FILTER = "HTML (StarWriter)"


def resolve_soffice(override: str | None = None) -> str:
    """Locate the LibreOffice CLI.

    Order: explicit override, then ``SOFFICE_BIN``, then the platform's
    standard install location if it exists, then plain ``soffice`` from PATH.
    """
    if override:
        return override
    env_bin = os.getenv("SOFFICE_BIN")
    if env_bin:
        return env_bin
    if sys.platform == "darwin" and os.path.exists(MAC_SOFFICE):
        return MAC_SOFFICE
    if sys.platform == "win32" and os.path.exists(WINDOWS_SOFFICE):
        return WINDOWS_SOFFICE
    return "soffice"


@dataclass(frozen=True)
class ProcessOutput:
    stdout: str
    stderr: str


async def run_process(cmd: Sequence[str], cwd: str | os.PathLike[str], *, timeout: float | None = None) -> ProcessOutput:
    """Run ``cmd`` to completion, capturing both output streams.

    Raises ProcessStartError when the executable cannot be launched,
    ProcessExitError on a nonzero exit and ConversionTimeoutError when
    ``timeout`` elapses (the process is killed first).
    """
    program = os.path.basename(cmd[0])
    logger.debug("running %s in %s", " ".join(cmd), cwd)
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            cwd=str(cwd),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise ProcessStartError(program, e) from e

    try:
        out, err = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        raise ConversionTimeoutError(program, timeout or 0) from None
    finally:
        # Timed out or cancelled: never leave the child running.
        if proc.returncode is None:
            proc.kill()
            await proc.wait()

    stdout = out.decode("utf-8", errors="replace")
    stderr = err.decode("utf-8", errors="replace")
    if proc.returncode != 0:
        raise ProcessExitError(program, proc.returncode or -1, stdout, stderr)
    return ProcessOutput(stdout=stdout, stderr=stderr)


@dataclass(frozen=True)
class Stage:
    """One soffice invocation: convert ``source`` into ``produces``."""

    name: str
    source: str
    produces: str
    convert_to: str
    infilter: str | None = None

    def args(self, workdir: Path) -> list[str]:
        args = ["--headless"]
        if self.infilter:
            args.append(f"--infilter={self.infilter}")
        args += ["--convert-to", self.convert_to, "--outdir", str(workdir), str(workdir / self.source)]
        return args


HTML_TO_DOCX_STAGES = (
    Stage("html-to-odt", source="source.html", produces="source.odt", convert_to="odt", infilter=HTML_WRITER_FILTER),
    Stage("odt-to-docx", source="source.odt", produces="source.docx", convert_to="docx"),
)
DOCX_TO_PDF_STAGES = (Stage("docx-to-pdf", source="source.docx", produces="source.pdf", convert_to="pdf"),)


def _remove_workdir(path: Path) -> None:
    try:
        shutil.rmtree(path)
    except OSError:
        logger.warning("could not remove conversion directory %s", path, exc_info=True)


class SofficeConverter(OfficeConverter):
    def __init__(self, soffice_bin: str | None = None, *, timeout: float | None = None) -> None:
        self._soffice_bin = soffice_bin
        self._timeout = timeout

    async def run_stages(self, content: bytes, stages: Sequence[Stage]) -> bytes:
        """Run ``stages`` in a fresh temp directory and return the last artifact."""
        soffice = resolve_soffice(self._soffice_bin)
        workdir = Path(await asyncio.to_thread(tempfile.mkdtemp, prefix="docmerge-"))
        try:
            await asyncio.to_thread((workdir / stages[0].source).write_bytes, content)
            # A private profile lets concurrent conversions run side by side.
            profile = f"-env:UserInstallation={(workdir / 'profile').as_uri()}"
            for stage in stages:
                await run_process([soffice, profile, *stage.args(workdir)], workdir, timeout=self._timeout)
                produced = workdir / stage.produces
                if not produced.exists():
                    raise IntermediateArtifactMissingError(stage.name, produced.name)
                logger.debug("stage %s produced %s", stage.name, produced.name)
            return await asyncio.to_thread((workdir / stages[-1].produces).read_bytes)
        finally:
            await asyncio.to_thread(_remove_workdir, workdir)

    async def docx_to_pdf(self, content: bytes) -> bytes:
        return await self.run_stages(content, DOCX_TO_PDF_STAGES)

    async def html_to_docx(self, content: bytes) -> bytes:
        return await self.run_stages(content, HTML_TO_DOCX_STAGES)


class ChromiumPrinter(HtmlPrinter):
    """Print HTML to PDF with a fresh headless Chromium per call."""

    def __init__(self, *, page_format: str = "Letter", timeout: float | None = None) -> None:
        self._page_format = page_format
        self._timeout = timeout

    async def _print(self, html: str) -> bytes:
        async with async_playwright() as p:
            browser = await p.chromium.launch(
                headless=True,
                chromium_sandbox=True,
                # Containers usually ship a tiny /dev/shm.
                args=["--disable-dev-shm-usage"],
            )
            try:
                page = await browser.new_page()
                # Let referenced fonts and images finish loading before printing.
                await page.set_content(html, wait_until="networkidle")
                return await page.pdf(format=self._page_format)
            finally:
                await browser.close()

    async def html_to_pdf(self, content: bytes) -> bytes:
        html = content.decode("utf-8", errors="replace")
        try:
            return await asyncio.wait_for(self._print(html), timeout=self._timeout)
        except (asyncio.TimeoutError, PlaywrightTimeoutError) as e:
            raise ConversionTimeoutError("chromium print", self._timeout or 0) from e
        except PlaywrightError as e:
            raise BrowserRenderError(f"chromium print failed: {e.message}") from e


Converter = Callable[[bytes], Awaitable[bytes]]


class ConversionChain:
    def __init__(self, office: OfficeConverter, printer: HtmlPrinter) -> None:
        self._routes: dict[tuple[DocumentFormat, DocumentFormat], Converter | None] = {
            (DocumentFormat.DOCX, DocumentFormat.DOCX): None,
            (DocumentFormat.DOCX, DocumentFormat.PDF): office.docx_to_pdf,
            (DocumentFormat.HTML, DocumentFormat.HTML): None,
            (DocumentFormat.HTML, DocumentFormat.PDF): printer.html_to_pdf,
            (DocumentFormat.HTML, DocumentFormat.DOCX): office.html_to_docx,
        }

    def supports(self, source: DocumentFormat, target: DocumentFormat) -> bool:
        return (source, target) in self._routes

    async def convert(self, content: bytes, source: DocumentFormat, target: DocumentFormat) -> bytes:
        try:
            converter = self._routes[(source, target)]
        except KeyError:
            allowed = sorted(f.value for f in ALLOWED_OUTPUTS.get(source, ()))
            raise UnsupportedOutputTypeError(target.value, allowed) from None
        if converter is None:
            return content
        logger.info("converting %s -> %s", source.value, target.value)
        result = await converter(content)
        if not result:
            raise ExternalToolError(f"{source.value} -> {target.value} conversion produced no output")
        return result
