"""Office -> PDF converters used for exact page counts."""

import asyncio
import contextlib
import shutil
import tempfile
import time
from abc import ABC, abstractmethod
from pathlib import Path

import httpx

from printquota.core.config import Settings
from printquota.core.exceptions import ConversionUnavailableError
from printquota.core.logging import get_logger

log = get_logger(__name__)

SOFFICE_PATHS = (
    "/usr/bin/soffice",
    "/usr/lib/libreoffice/program/soffice",
    "/opt/libreoffice/program/soffice",
    "/Applications/LibreOffice.app/Contents/MacOS/soffice",
    r"C:\Program Files\LibreOffice\program\soffice.exe",
    r"C:\Program Files (x86)\LibreOffice\program\soffice.exe",
)


def make_work_dir(root: str | Path) -> Path:
    """Fresh directory per conversion, keyed by nanosecond time plus a random suffix."""
    root = Path(root).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return Path(tempfile.mkdtemp(prefix=f"convert_{time.time_ns()}_", dir=root))


def _stderr_excerpt(stderr: bytes | None, limit: int = 500) -> str:
    if not stderr:
        return ""
    lines = [
        line
        for line in stderr.decode("utf-8", errors="replace").splitlines()
        if line.strip() and "fontconfig" not in line and not line.startswith(("Warning", "Info"))
    ]
    return " ".join(lines)[:limit]


class DocumentConverter(ABC):
    name = "converter"

    @abstractmethod
    async def convert(self, source: Path) -> Path:
        """
        Convert `source` to PDF and return the PDF path.
        The PDF lives in a fresh directory; the caller removes `result.parent` when done.
        Raises ConversionUnavailableError on any failure.
        """
        ...


class LibreOfficeConverter(DocumentConverter):
    name = "libreoffice"

    def __init__(
        self,
        work_root: str | Path,
        binary: str | None = None,
        timeout: float = 30.0,
        poll_attempts: int = 5,
        poll_interval: float = 0.5,
    ) -> None:
        self.work_root = Path(work_root)
        self.binary = binary
        self.timeout = timeout
        self.poll_attempts = poll_attempts
        self.poll_interval = poll_interval

    def find_binary(self) -> str | None:
        if self.binary:
            return shutil.which(self.binary) or (self.binary if Path(self.binary).is_file() else None)
        found = shutil.which("soffice") or shutil.which("libreoffice")
        if found:
            return found
        for candidate in SOFFICE_PATHS:
            if Path(candidate).is_file():
                return candidate
        return None

    async def convert(self, source: Path) -> Path:
        binary = self.find_binary()
        if not binary:
            raise ConversionUnavailableError("LibreOffice is not installed", details={"converter": self.name})

        out_dir = make_work_dir(self.work_root)
        args = [
            "--headless",
            "--nodefault",
            "--nolockcheck",
            "--invisible",
            "--norestore",
            # separate profile per run; soffice refuses to share one between processes
            f"-env:UserInstallation={(out_dir / 'profile').as_uri()}",
            "--convert-to",
            "pdf",
            "--outdir",
            str(out_dir),
            str(source),
        ]
        started = time.perf_counter()
        try:
            proc = await asyncio.create_subprocess_exec(
                binary,
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            shutil.rmtree(out_dir, ignore_errors=True)
            raise ConversionUnavailableError(
                f"Could not start LibreOffice: {e}", details={"converter": self.name}
            ) from e

        try:
            _, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except (asyncio.TimeoutError, asyncio.CancelledError) as e:
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            await proc.wait()
            shutil.rmtree(out_dir, ignore_errors=True)
            if isinstance(e, asyncio.CancelledError):
                raise
            log.warning("conversion_timeout", converter=self.name, source=source.name, timeout_seconds=self.timeout)
            raise ConversionUnavailableError(
                "Document conversion timed out",
                details={"converter": self.name, "timeout_seconds": self.timeout},
            ) from e

        pdf = await self._wait_for_output(out_dir, source)
        if pdf is None:
            shutil.rmtree(out_dir, ignore_errors=True)
            log.warning("conversion_no_output", converter=self.name, source=source.name, exit_code=proc.returncode)
            raise ConversionUnavailableError(
                "LibreOffice did not produce a PDF",
                details={
                    "converter": self.name,
                    "exit_code": proc.returncode,
                    "stderr": _stderr_excerpt(stderr),
                },
            )
        if proc.returncode:
            # soffice sometimes exits non-zero after writing a valid file
            log.warning("conversion_nonzero_exit", converter=self.name, exit_code=proc.returncode)
        log.info(
            "conversion_done",
            converter=self.name,
            source=source.name,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        return pdf

    async def _wait_for_output(self, out_dir: Path, source: Path) -> Path | None:
        expected = out_dir / f"{source.stem}.pdf"
        for attempt in range(self.poll_attempts):
            if expected.is_file():
                return expected
            found = sorted(p for p in out_dir.glob("*.pdf") if p.is_file())
            if found:
                return found[0]
            if attempt < self.poll_attempts - 1:
                await asyncio.sleep(self.poll_interval)
        return None


class ConvertApiConverter(DocumentConverter):
    """ConvertAPI v2 cloud conversion: POST /convert/{ext}/to/pdf, then download Files[0].Url."""

    name = "convertapi"

    def __init__(
        self,
        secret: str,
        work_root: str | Path,
        base_url: str = "https://v2.convertapi.com",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.secret = secret
        self.work_root = Path(work_root)
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def convert(self, source: Path) -> Path:
        ext = source.suffix.lower().lstrip(".")
        if not ext:
            raise ConversionUnavailableError("Cannot convert a file without extension", details={"converter": self.name})
        try:
            data = await asyncio.to_thread(source.read_bytes)
        except OSError as e:
            raise ConversionUnavailableError(
                f"Cannot read source file: {e}", details={"converter": self.name}
            ) from e

        url = f"{self.base_url}/convert/{ext}/to/pdf"
        try:
            # httpx timeouts bound each read separately; this bounds the whole exchange
            async with asyncio.timeout(self.timeout):
                async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                    resp = await client.post(
                        url,
                        params={"Secret": self.secret},
                        files={"File": (source.name, data)},
                    )
                    resp.raise_for_status()
                    files = resp.json().get("Files") or []
                    file_url = files[0].get("Url") if files else None
                    if not file_url:
                        raise ConversionUnavailableError(
                            "ConvertAPI returned no file", details={"converter": self.name}
                        )
                    pdf_resp = await client.get(file_url)
                    pdf_resp.raise_for_status()
        except (TimeoutError, httpx.TimeoutException) as e:
            log.warning("conversion_timeout", converter=self.name, source=source.name, timeout_seconds=self.timeout)
            raise ConversionUnavailableError(
                "Document conversion timed out",
                details={"converter": self.name, "timeout_seconds": self.timeout},
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise ConversionUnavailableError(
                f"ConvertAPI request failed: {e}", details={"converter": self.name}
            ) from e

        out_dir = None
        try:
            out_dir = make_work_dir(self.work_root)
            pdf = out_dir / f"{source.stem}.pdf"
            await asyncio.to_thread(pdf.write_bytes, pdf_resp.content)
        except OSError as e:
            if out_dir is not None:
                shutil.rmtree(out_dir, ignore_errors=True)
            raise ConversionUnavailableError(
                f"Cannot write converted PDF: {e}", details={"converter": self.name}
            ) from e
        return pdf


class FallbackConverter(DocumentConverter):
    """Try converters in order; re-raise the last failure."""

    name = "fallback"

    def __init__(self, *converters: DocumentConverter) -> None:
        self.converters = converters

    async def convert(self, source: Path) -> Path:
        last_error: ConversionUnavailableError | None = None
        for converter in self.converters:
            try:
                return await converter.convert(source)
            except ConversionUnavailableError as e:
                log.warning("converter_failed", converter=converter.name, reason=e.message)
                last_error = e
        raise last_error or ConversionUnavailableError("No document converter configured")


def build_converter(settings: Settings) -> DocumentConverter:
    converters: list[DocumentConverter] = []
    if settings.convertapi_secret:
        converters.append(
            ConvertApiConverter(
                settings.convertapi_secret,
                settings.conversion_work_dir,
                base_url=settings.convertapi_base_url,
                timeout=settings.converter_timeout_seconds,
            )
        )
    converters.append(
        LibreOfficeConverter(
            settings.conversion_work_dir,
            binary=settings.libreoffice_path,
            timeout=settings.converter_timeout_seconds,
        )
    )
    return FallbackConverter(*converters)

