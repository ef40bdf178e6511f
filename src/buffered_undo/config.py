"""Project configuration helpers."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional
import logging

import yaml

from .constants import CONFIG_FILE, DEFAULT_CONTEXT_LINES, PROJECT_CONFIG_DIR

logger = logging.getLogger(__name__)


@dataclass
class UndoConfig:
    """Configuration controlling sandboxing, caching and diff rendering."""

    cache_dir: Optional[Path] = None
    context_lines: int = DEFAULT_CONTEXT_LINES
    extra_ignores: List[str] = field(default_factory=list)
    reuse_sandbox: bool = True


def load_undo_config(root: Path) -> UndoConfig:
    """Load configuration from .buffered-undo/config.yaml if present."""

    cfg_path = Path(root) / PROJECT_CONFIG_DIR / CONFIG_FILE
    if not cfg_path.exists():
        return UndoConfig()

    try:
        data = yaml.safe_load(cfg_path.read_text()) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning("Ignoring unreadable config %s: %s", cfg_path, e)
        return UndoConfig()

    cache_dir = data.get("cache_dir")
    return UndoConfig(
        cache_dir=Path(cache_dir).expanduser() if cache_dir else None,
        context_lines=int(data.get("context_lines", DEFAULT_CONTEXT_LINES)),
        extra_ignores=list(data.get("ignore", [])),
        reuse_sandbox=bool(data.get("reuse_sandbox", True)),
    )
