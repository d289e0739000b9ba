# Copyright (c) 2025 Dave Tofflemire, SigilDERG Project
# Licensed under the GNU Affero General Public License v3.0 (AGPLv3).
# Commercial licenses are available. Contact: davetmire85@gmail.com

"""
Configuration loader for semindex.

Loads configuration from a JSON file with fallback to environment variables.
"""

import os
import json
import logging
from pathlib import Path
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)

# Known output dimensions of the supported embedding models
MODEL_DIMENSIONS: Dict[str, int] = {
    "voyage-code-3": 1024,
    "voyage-code-2": 1536,
}

DEFAULT_EMBEDDING_MODEL = "voyage-code-3"
DEFAULT_MAX_FILE_SIZE = 1024 * 1024
DEFAULT_MIN_CHUNK_CHARS = 50
DEFAULT_MAX_CHUNK_CHARS = 8000
DEFAULT_MAX_TREE_DEPTH = 512
DEFAULT_BATCH_SIZE = 50
MAX_BATCH_SIZE = 128

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"


def _parse_csv_list(raw_value: Optional[str]) -> list[str]:
    """Parse comma-separated environment variable values into a list."""
    if not raw_value:
        return []
    return [item.strip() for item in raw_value.split(",") if item.strip()]


class Config:
    """Configuration manager for semindex."""

    def __init__(self, config_path: Optional[Path] = None):
        """
        Initialize configuration.

        Args:
            config_path: Path to a JSON config file. If None, searches in:
                1. ./semindex.json (current directory)
                2. ~/.semindex/config.json
                3. Falls back to environment variables
        """
        self.config_data: Dict[str, Any] = {}
        self._load_config(config_path)
        self._validate_embeddings_dimension()

    def _load_config(self, config_path: Optional[Path] = None):
        """Load configuration from file or environment."""
        if config_path:
            if config_path.exists():
                self._load_from_file(config_path)
                return
            # Explicit path provided but doesn't exist - fall back to env
            logger.info(
                f"Config path {config_path} does not exist, "
                "using environment variables"
            )
            self._load_from_env()
            return

        local_config = Path("semindex.json")
        if local_config.exists():
            self._load_from_file(local_config)
            return

        user_config = Path.home() / ".semindex" / "config.json"
        if user_config.exists():
            self._load_from_file(user_config)
            return

        logger.info("No config file found, using environment variables")
        self._load_from_env()

    def _validate_embeddings_dimension(self) -> None:
        """Fill in the embedding dimension from the model table and warn on mismatch."""
        model = self.embeddings_model
        expected = MODEL_DIMENSIONS.get(model)
        dimension_value = self.get("embeddings.dimension")

        if dimension_value is None:
            if expected is not None:
                self.config_data.setdefault("embeddings", {})["dimension"] = expected
            return

        try:
            dimension = int(dimension_value)
        except (TypeError, ValueError):
            fallback = expected or MODEL_DIMENSIONS[DEFAULT_EMBEDDING_MODEL]
            logger.warning(
                "Invalid embeddings.dimension '%s', defaulting to %s",
                dimension_value,
                fallback,
            )
            self.config_data.setdefault("embeddings", {})["dimension"] = fallback
            return

        if expected is not None and dimension != expected:
            logger.warning(
                "Configured embeddings.dimension %s differs from %s for model %s; "
                "it will be requested as output_dimension.",
                dimension,
                expected,
                model,
            )

        self.config_data.setdefault("embeddings", {})["dimension"] = dimension

    def _load_from_file(self, path: Path):
        """Load configuration from JSON file."""
        try:
            with open(path, "r") as f:
                self.config_data = json.load(f)
            logger.info(f"Loaded configuration from {path}")
        except Exception as e:
            logger.error(f"Error loading config from {path}: {e}")
            self._load_from_env()

    def _load_from_env(self):
        """Load configuration from environment variables."""
        embeddings: Dict[str, Any] = {
            "provider": os.getenv("SEMINDEX_EMBEDDINGS_PROVIDER", "voyage"),
            "model": os.getenv("SEMINDEX_EMBEDDINGS_MODEL", DEFAULT_EMBEDDING_MODEL),
            "batch_size": int(os.getenv("SEMINDEX_EMBEDDINGS_BATCH_SIZE", str(DEFAULT_BATCH_SIZE))),
        }
        dimension = os.getenv("SEMINDEX_EMBEDDINGS_DIMENSION")
        if dimension:
            embeddings["dimension"] = dimension

        self.config_data = {
            "index": {
                "path": os.getenv("SEMINDEX_INDEX_PATH", "~/.semindex"),
                "max_file_size": int(
                    os.getenv("SEMINDEX_MAX_FILE_SIZE", str(DEFAULT_MAX_FILE_SIZE))
                ),
                "ignore_patterns": _parse_csv_list(os.getenv("SEMINDEX_IGNORE_PATTERNS")),
            },
            "embeddings": embeddings,
            "logging": {
                "level": os.getenv("SEMINDEX_LOG_LEVEL", "INFO"),
            },
        }

    # Getters for easy access
    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value by dot-notation key."""
        keys = key.split(".")
        value = self.config_data
        for k in keys:
            if isinstance(value, dict):
                value = value.get(k)
            else:
                return default
        return value if value is not None else default

    def _get_int(self, key: str, default: int) -> int:
        value = self.get(key, default)
        try:
            return int(value)
        except (TypeError, ValueError):
            logger.warning("Invalid %s '%s', defaulting to %s", key, value, default)
            return default

    @property
    def log_level(self) -> str:
        return self.get("logging.level", "INFO")

    @property
    def log_file(self) -> Optional[str]:
        """Get log file path from config or environment."""
        env_log_file = os.getenv("SEMINDEX_LOG_FILE")
        if env_log_file:
            return env_log_file
        return self.get("logging.file") or None

    @property
    def index_path(self) -> Path:
        """Shared data directory; per-project indexes live under ``indexes/``."""
        path_str = self.get("index.path", "~/.semindex")
        return Path(path_str).expanduser().resolve()

    @property
    def index_max_file_size(self) -> int:
        return self._get_int("index.max_file_size", DEFAULT_MAX_FILE_SIZE)

    @property
    def index_ignore_patterns(self) -> list[str]:
        value = self.get("index.ignore_patterns", [])
        if isinstance(value, str):
            return _parse_csv_list(value)
        return [str(item) for item in value if str(item).strip()]

    @property
    def chunk_min_chars(self) -> int:
        return self._get_int("chunking.min_chars", DEFAULT_MIN_CHUNK_CHARS)

    @property
    def chunk_max_chars(self) -> int:
        return self._get_int("chunking.max_chars", DEFAULT_MAX_CHUNK_CHARS)

    @property
    def chunk_max_depth(self) -> int:
        return self._get_int("chunking.max_depth", DEFAULT_MAX_TREE_DEPTH)

    @property
    def embeddings_provider(self) -> str:
        """Get embedding provider name."""
        return self.get("embeddings.provider", "voyage")

    @property
    def embeddings_model(self) -> str:
        """Get embedding model name."""
        return self.get("embeddings.model", DEFAULT_EMBEDDING_MODEL)

    @property
    def embeddings_dimension(self) -> int:
        """Get embedding dimension."""
        default = MODEL_DIMENSIONS.get(
            self.embeddings_model, MODEL_DIMENSIONS[DEFAULT_EMBEDDING_MODEL]
        )
        return self._get_int("embeddings.dimension", default)

    @property
    def embeddings_api_key(self) -> Optional[str]:
        """Get embeddings API key."""
        api_key = self.get("embeddings.api_key")
        if not api_key:
            api_key = os.getenv("VOYAGE_API_KEY")
        return api_key

    @property
    def embeddings_batch_size(self) -> int:
        size = self._get_int("embeddings.batch_size", DEFAULT_BATCH_SIZE)
        return max(1, min(size, MAX_BATCH_SIZE))

    @property
    def embeddings_max_retries(self) -> int:
        return max(0, self._get_int("embeddings.max_retries", 3))

    @property
    def embeddings_timeout(self) -> float:
        value = self.get("embeddings.timeout", 60.0)
        try:
            return float(value)
        except (TypeError, ValueError):
            return 60.0

    @property
    def embeddings_max_batch_tokens(self) -> int:
        return self._get_int("embeddings.max_batch_tokens", 120_000)


# Global config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get or create global configuration instance."""
    global _config
    if _config is None:
        _config = Config()
    return _config


def load_config(config_path: Optional[Path] = None):
    """Load configuration from specified path."""
    global _config
    _config = Config(config_path)
    return _config


def setup_logging(config: Optional[Config] = None) -> None:
    """Configure root logging handlers from config (used by scripts)."""
    cfg = config or get_config()
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if cfg.log_file:
        log_path = Path(cfg.log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path))
    logging.basicConfig(
        level=getattr(logging, str(cfg.log_level).upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )
