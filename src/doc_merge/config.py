import os
from dataclasses import dataclass
from pathlib import Path


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    """Runtime configuration read from the environment."""

    data_dir: Path
    soffice_bin: str | None = None
    convert_timeout_sec: float = 120.0
    pdf_page_format: str = "Letter"
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 8080
    reload: bool = True

    @property
    def uploads_dir(self) -> Path:
        return self.data_dir / "uploads"

    @property
    def outputs_dir(self) -> Path:
        return self.data_dir / "outputs"

    @property
    def templates_dir(self) -> Path:
        return self.data_dir / "templates"

    @property
    def jobs_dir(self) -> Path:
        return self.data_dir / "jobs"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            data_dir=Path(os.getenv("DATA_DIR", "./data")).resolve(),
            # Empty string means "not set" so the well-known install paths are probed.
            soffice_bin=os.getenv("SOFFICE_BIN") or None,
            convert_timeout_sec=float(os.getenv("CONVERT_TIMEOUT_SEC", "120")),
            pdf_page_format=os.getenv("PDF_PAGE_FORMAT", "Letter"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "8080")),
            reload=_env_flag("RELOAD", "true"),
        )
