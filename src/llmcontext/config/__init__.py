# src/llmcontext/config/__init__.py
"""
Configuration module for the llmcontext library.

Configuration is layered by ``confy``; later sources win:
    - Model defaults (see ``models.py``)
    - TOML file with root-level tables (``[retrieval]``, ``[indexing]``, ...)
    - Environment variables with the ``LLMCONTEXT`` prefix.  ``_`` separates
      keys and ``__`` stands for a literal underscore:
      ``LLMCONTEXT_RETRIEVAL_BLEND__ALPHA=0.3``
    - Explicit dictionary passed by the host application

The merged dictionary is then validated by :class:`LayeredContextConfig`.
Validation failures raise :class:`~llmcontext.exceptions.ConfigError`; this is
the only error that is meant to stop the host application from starting.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Mapping

from confy.loader import Config as ConfyConfig
from pydantic import ValidationError

from ..exceptions import ConfigError
from .models import (
    DEFAULT_TOPIC_THRESHOLDS,
    CompactionSettings,
    IndexingSettings,
    LayeredContextConfig,
    LayerThresholds,
    LoggingSettings,
    RetrievalSettings,
    StorageSettings,
    SummarySettings,
    TopicThresholds,
)

logger = logging.getLogger(__name__)

SECTION_NAME = "layered_context"
DEFAULT_ENV_PREFIX = "LLMCONTEXT"


def _dotted(data: Mapping[str, Any], parent: str = "") -> dict[str, Any]:
    """Flatten nested overrides to confy's dot-notation keys so sibling values survive."""
    flat: dict[str, Any] = {}
    for key, value in data.items():
        path = f"{parent}.{key}" if parent else str(key)
        if isinstance(value, Mapping) and value:
            flat.update(_dotted(value, path))
        else:
            flat[path] = value
    return flat


def load_config(
    config_dict: Mapping[str, Any] | None = None,
    config_path: str | Path | None = None,
    env_prefix: str | None = DEFAULT_ENV_PREFIX,
) -> LayeredContextConfig:
    """
    Load and validate the layered context configuration.

    Args:
        config_dict: Overrides from the host application. If it has a
            ``"layered_context"`` key, that section is used.
        config_path: Path to a TOML file.
        env_prefix: Prefix for environment overrides; ``None`` disables them.

    Returns:
        Validated ``LayeredContextConfig``.

    Raises:
        ConfigError: If the file is missing or unreadable, or a value fails validation.

    Examples:
        >>> load_config(config_dict={"retrieval": {"blend_alpha": 0.3}}, env_prefix=None).retrieval.blend_alpha
        0.3
    """
    file_path = None
    if config_path is not None:
        path = Path(config_path).expanduser()
        if not path.is_file():
            raise ConfigError(f"Config file not found: {path}")
        file_path = str(path)

    overrides = None
    if config_dict:
        overrides = _dotted(config_dict.get(SECTION_NAME, config_dict))

    try:
        confy_config = ConfyConfig(
            defaults=LayeredContextConfig().model_dump(mode="json"),
            file_path=file_path,
            prefix=env_prefix,
            overrides_dict=overrides,
        )
    except Exception as e:
        raise ConfigError(f"Layered context configuration loading failed: {e}") from e

    data = confy_config.as_dict()
    logger.debug("Loaded layered context configuration sections: %s", ", ".join(sorted(data)))
    try:
        return LayeredContextConfig(**data)
    except ValidationError as e:
        raise ConfigError(f"Invalid layered context configuration: {e}") from e


__all__ = [
    "DEFAULT_TOPIC_THRESHOLDS",
    "CompactionSettings",
    "IndexingSettings",
    "LayeredContextConfig",
    "LayerThresholds",
    "LoggingSettings",
    "RetrievalSettings",
    "StorageSettings",
    "SummarySettings",
    "TopicThresholds",
    "load_config",
]
