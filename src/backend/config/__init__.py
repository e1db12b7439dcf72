"""Backend settings loader from environment variables."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Tuple
import os

PROJECT_ROOT = Path(__file__).resolve().parents[3]

DEFAULT_CORS_ORIGINS = (
    "http://localhost:5173",
    "http://127.0.0.1:5173",
)


def _env_int(name: str, default: int) -> int:
    """Read an int env var with a default."""
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return int(value)


def _env_bool(name: str, default: bool) -> bool:
    """Read a boolean env var with a default."""
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.lower() in {"1", "true", "yes"}


def _env_path(name: str, default: Path) -> Path:
    """Read a path env var; relative values resolve against the project root."""
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return (PROJECT_ROOT / value).resolve()


def _app_env() -> str:
    """Return the application environment name."""
    return os.getenv("APP_ENV") or os.getenv("ENV") or "dev"


@dataclass(frozen=True)
class Settings:
    """Configuration values parsed from the environment."""
    project_root: Path
    data_dir: Path
    singers_dir: Path
    render_cache_dir: Path
    progress_path: Path
    write_progress_file: bool
    export_sample_rate: int
    export_channels: int
    max_upload_bytes: int
    server_host: str
    server_port: int
    cors_origins: Tuple[str, ...]
    backend_debug: bool
    app_env: str

    @classmethod
    def from_env(cls) -> "Settings":
        """Construct settings from environment variables."""
        data_dir = _env_path("BACKEND_DATA_DIR", PROJECT_ROOT / "data")
        singers_dir = _env_path("SINGERS_DIR", data_dir / "singers")
        render_cache_dir = _env_path("RENDER_CACHE_DIR", data_dir / "cache")
        progress_path = data_dir / "progress.json"
        write_progress_file = _env_bool("BACKEND_PROGRESS_FILE", False)
        export_sample_rate = _env_int("EXPORT_SAMPLE_RATE", 44100)
        if export_sample_rate <= 0:
            raise ValueError("EXPORT_SAMPLE_RATE must be positive.")
        export_channels = _env_int("EXPORT_CHANNELS", 2)
        if export_channels not in (1, 2):
            raise ValueError("EXPORT_CHANNELS must be 1 or 2.")
        max_upload_mb = _env_int("BACKEND_MAX_UPLOAD_MB", 20)
        max_upload_bytes = max_upload_mb * 1024 * 1024
        server_host = os.getenv("SERVER_HOST", "127.0.0.1").strip()
        server_port = _env_int("SERVER_PORT", 5000)
        cors_env = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
        if cors_env:
            cors_origins = tuple(
                origin.strip() for origin in cors_env.split(",") if origin.strip()
            )
        else:
            cors_origins = DEFAULT_CORS_ORIGINS
        backend_debug = _env_bool("BACKEND_DEBUG", False)
        return cls(
            project_root=PROJECT_ROOT,
            data_dir=data_dir,
            singers_dir=singers_dir,
            render_cache_dir=render_cache_dir,
            progress_path=progress_path,
            write_progress_file=write_progress_file,
            export_sample_rate=export_sample_rate,
            export_channels=export_channels,
            max_upload_bytes=max_upload_bytes,
            server_host=server_host,
            server_port=server_port,
            cors_origins=cors_origins,
            backend_debug=backend_debug,
            app_env=_app_env(),
        )
