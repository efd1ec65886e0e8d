import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .errors import ConfigurationError

ROOT_DIR = Path(__file__).resolve().parent.parent


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}")


@dataclass
class Settings:
    """Runtime configuration, read from the environment (and .env)."""
    mongo_uri: str = "mongodb://localhost:27017/"
    mongo_db: str = "memory_studio"
    openai_api_key: Optional[str] = None
    fine_tune_model: str = "gpt-4o-2024-08-06"
    upload_folder: Path = ROOT_DIR / "uploads"
    temp_folder: Path = ROOT_DIR / "temp"
    max_content_length: int = 16 * 1024 * 1024  # 16MB max upload
    embedding_max_processing_ms: int = 2000
    require_face: bool = True
    log_level: str = "INFO"
    port: int = 5001

    @classmethod
    def from_env(cls, env_file: Optional[Path] = None) -> "Settings":
        load_dotenv(dotenv_path=env_file or ROOT_DIR / ".env")
        return cls(
            mongo_uri=os.getenv("MONGO_URI", cls.mongo_uri),
            mongo_db=os.getenv("MONGO_DB", cls.mongo_db),
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            fine_tune_model=os.getenv("FINE_TUNE_MODEL", cls.fine_tune_model),
            upload_folder=Path(os.getenv("UPLOAD_FOLDER", str(ROOT_DIR / "uploads"))),
            temp_folder=Path(os.getenv("TEMP_FOLDER", str(ROOT_DIR / "temp"))),
            max_content_length=_env_int("MAX_CONTENT_LENGTH", cls.max_content_length),
            embedding_max_processing_ms=_env_int(
                "EMBEDDING_MAX_PROCESSING_MS", cls.embedding_max_processing_ms
            ),
            require_face=_env_bool("REQUIRE_FACE", cls.require_face),
            log_level=os.getenv("LOG_LEVEL", cls.log_level).upper(),
            port=_env_int("PORT", cls.port),
        )


def configure_logging(level: str = "INFO"):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
