"""Documentation corpus discovery and loading."""

import logging
from pathlib import Path

from errors import ConfigurationError, DataError

logger = logging.getLogger(__name__)

DOC_EXTENSIONS = (".md", ".mdx")


def list_documents(root: Path, extensions: tuple[str, ...] = DOC_EXTENSIONS) -> list[Path]:
    """Recursively list indexable documents under ``root``, sorted by path.

    Raises:
        ConfigurationError: If ``root`` is not a directory.
    """
    root = Path(root)
    if not root.is_dir():
        raise ConfigurationError(f"Corpus root not found: {root}")
    files = [
        p for p in root.rglob("*")
        if p.is_file() and p.suffix.lower() in extensions
    ]
    files.sort(key=lambda p: p.as_posix())
    logger.info("Found %d documents under %s", len(files), root)
    return files


def source_path_for(path: Path, base: Path) -> str:
    """'/'-separated path of ``path`` relative to ``base`` (absolute if outside it)."""
    path = Path(path).resolve()
    try:
        return path.relative_to(Path(base).resolve()).as_posix()
    except ValueError:
        return path.as_posix()


def read_document(path: Path) -> str:
    """Read a document as UTF-8 text.

    Raises:
        DataError: If the file cannot be read or decoded.
    """
    try:
        return Path(path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise DataError(f"Cannot read {path}: {e}") from e
