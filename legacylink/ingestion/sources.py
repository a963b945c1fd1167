"""Source collection.

Walk a file or folder, read every legacy source with an allowed extension and
join them into one migration input. Each file is introduced by a marker line
so the decomposition step can keep one unit per file.
"""

from pathlib import Path
from typing import Iterable, List, Optional
from legacylink.settings import settings

MARKER = '*> SOURCE_FILE: '


def collect_files(path: Path, extensions: Optional[Iterable[str]] = None) -> List[Path]:
    allowed = {e.lower() for e in (extensions or settings.source_extensions)}
    if path.is_file():
        return [path]
    return sorted(p for p in path.rglob('*') if p.is_file() and p.suffix.lower() in allowed)


def load_file(path: Path) -> str:
    return path.read_text(encoding='utf-8', errors='ignore')


def collect_sources(path: str | Path, extensions: Optional[Iterable[str]] = None) -> str:
    base = Path(path)
    if not base.exists():
        raise FileNotFoundError(base)
    parts = []
    for fp in collect_files(base, extensions):
        text = load_file(fp).rstrip('\n')
        name = fp.name if base.is_file() else str(fp.relative_to(base))
        parts.append(f'{MARKER}{name}\n{text}')
    return '\n\n'.join(parts)
