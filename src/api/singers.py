"""
Installed singer lookup.
"""

from pathlib import Path
from typing import Dict, List, Optional, Union
import threading

import yaml

from src.project.models import SingerRef
from src.backend.logging_utils import get_logger

logger = get_logger(__name__)

CHARACTER_FILES = ("character.yaml", "character.txt")


def _read_character_name(singer_dir: Path) -> Optional[str]:
    """Read the display name from character.yaml or an UTAU character.txt."""
    yaml_file = singer_dir / "character.yaml"
    if yaml_file.exists():
        try:
            data = yaml.safe_load(yaml_file.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as exc:
            logger.warning("singer_character_unreadable path=%s error=%s", yaml_file, exc)
            return None
        if isinstance(data, dict) and data.get("name"):
            return str(data["name"])
        return None
    txt_file = singer_dir / "character.txt"
    if txt_file.exists():
        try:
            lines = txt_file.read_text(encoding="utf-8", errors="replace").splitlines()
        except OSError as exc:
            logger.warning("singer_character_unreadable path=%s error=%s", txt_file, exc)
            return None
        for line in lines:
            key, sep, value = line.partition("=")
            if sep and key.strip().lower() == "name" and value.strip():
                return value.strip()
    return None


class SingerLibrary:
    """Singers installed under a directory, one subdirectory per singer."""

    def __init__(self, root: Union[str, Path]) -> None:
        self._root = Path(root)
        self._lock = threading.Lock()
        self._singers: Optional[Dict[str, SingerRef]] = None

    @property
    def root(self) -> Path:
        return self._root

    def refresh(self) -> None:
        with self._lock:
            self._singers = None

    def _scan(self) -> Dict[str, SingerRef]:
        with self._lock:
            if self._singers is not None:
                return self._singers
            singers: Dict[str, SingerRef] = {}
            if self._root.exists():
                for item in sorted(self._root.iterdir()):
                    if not item.is_dir():
                        continue
                    if not any((item / name).exists() for name in CHARACTER_FILES):
                        continue
                    name = _read_character_name(item) or item.name
                    singers[item.name] = SingerRef(id=item.name, name=name)
            logger.info("singers_scanned root=%s count=%s", self._root, len(singers))
            self._singers = singers
            return singers

    def list_singers(self) -> List[Dict[str, str]]:
        return [{"id": singer.id, "name": singer.name} for singer in self._scan().values()]

    def find(self, name: str) -> Optional[SingerRef]:
        """Find a singer by directory id or display name."""
        singers = self._scan()
        if name in singers:
            return singers[name]
        for singer in singers.values():
            if singer.name == name:
                return singer
        lowered = name.lower()
        for singer in singers.values():
            if singer.id.lower() == lowered or singer.name.lower() == lowered:
                return singer
        return None

    def resolve(self, name: str) -> SingerRef:
        """Like find(), but returns the missing-voice placeholder instead of None."""
        singer = self.find(name)
        if singer is None:
            logger.info("singer_missing requested=%s", name)
            return SingerRef.missing(name)
        return singer
