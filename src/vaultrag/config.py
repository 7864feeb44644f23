"""Application configuration defaults."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, List, Mapping

from vaultrag.embedding.encoder import DEFAULT_MODEL

LOGGER = logging.getLogger(__name__)

INDEX_DIR_NAME = ".vaultrag"


@dataclass(slots=True)
class RagOptions:
    """Retrieval options exposed to the user."""

    chunk_size: int = 1000
    overlap: int = 0
    threshold_tokens: int = 8192
    min_similarity: float = 0.0
    limit: int = 10
    include_patterns: List[str] = field(default_factory=list)
    exclude_patterns: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "RagOptions":
        """Build options from loosely typed settings.

        Missing or malformed values fall back to their defaults instead of
        raising, so an old settings file never blocks indexing.
        """
        options = cls()
        if not isinstance(data, Mapping):
            return options
        for item in fields(cls):
            key = item.name if item.name in data else _camel(item.name)
            if key not in data:
                continue
            default = getattr(options, item.name)
            value = _coerce(data[key], default)
            if value is None or not _in_range(item.name, value):
                LOGGER.warning("Ignoring invalid value for %s: %r", key, data[key])
                continue
            setattr(options, item.name, value)
        if options.overlap >= options.chunk_size:
            LOGGER.warning(
                "Ignoring overlap %d, it must be smaller than chunk size %d", options.overlap, options.chunk_size
            )
            options.overlap = 0
        return options


# Values outside these bounds fall back to the default
_MINIMUMS = {
    "chunk_size": 1,
    "overlap": 0,
    "threshold_tokens": 0,
    "min_similarity": 0.0,
    "limit": 1,
}


def _in_range(name: str, value: Any) -> bool:
    if name in _MINIMUMS and value < _MINIMUMS[name]:
        return False
    if name == "min_similarity" and value > 1.0:
        return False
    return True


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def _coerce(value: Any, default: Any) -> Any:
    if isinstance(default, list):
        if isinstance(value, (list, tuple)) and all(isinstance(v, str) for v in value):
            return list(value)
        return None
    if isinstance(value, bool):
        return None
    if isinstance(default, int) and isinstance(value, int):
        return value
    if isinstance(default, float) and isinstance(value, (int, float)):
        return float(value)
    return None


@dataclass(slots=True)
class GatewayConfig:
    """Batching and backoff parameters for embedding provider calls."""

    batch_size: int = 64
    max_concurrency: int = 4
    max_retries: int = 8
    initial_delay: float = 1.0
    max_delay: float = 60.0
    multiplier: float = 2.0
    jitter: bool = True


@dataclass(slots=True)
class AppConfig:
    vault_path: Path = field(default_factory=Path.cwd)
    db_path: Path | None = None
    model_name: str = DEFAULT_MODEL
    rag: RagOptions = field(default_factory=RagOptions)
    gateway: GatewayConfig = field(default_factory=GatewayConfig)
    cache_max_entries: int = 50_000

    def __post_init__(self) -> None:
        self.vault_path = Path(self.vault_path)
        if self.db_path is None:
            self.db_path = Path(INDEX_DIR_NAME) / "index.db"

    def resolve_db_path(self, base_dir: Path | None = None) -> Path:
        """Relative database paths live under the vault unless another base is given."""
        if self.db_path is None:
            self.db_path = Path(INDEX_DIR_NAME) / "index.db"
        if Path(self.db_path).is_absolute():
            return Path(self.db_path)
        return (base_dir or self.vault_path) / self.db_path


def load_settings(path: Path, vault_path: Path | None = None) -> AppConfig:
    """Read a JSON settings file.

    Accepts the plugin's camelCase layout (``embeddingModelId``,
    ``ragOptions``) as well as snake_case keys.
    """
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        LOGGER.warning("Could not read settings from %s: %s", path, exc)
        data = {}
    if not isinstance(data, dict):
        data = {}

    config = AppConfig(vault_path=vault_path or Path.cwd())
    model = data.get("embeddingModelId", data.get("model_name"))
    if isinstance(model, str) and model:
        config.model_name = model
    config.rag = RagOptions.from_dict(data.get("ragOptions", data.get("rag")))
    db_path = data.get("db_path")
    if isinstance(db_path, str) and db_path:
        config.db_path = Path(db_path)
    return config
