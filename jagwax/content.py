"""Static reply content (menu, quotes, canned replies) with YAML override support."""

import logging
import random
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

log = logging.getLogger(__name__)

DEFAULT_CONTENT_PATH = Path(__file__).with_name("data").joinpath("content.yaml")


class ContentConfig:
    """
    Merges the packaged content file with an optional override file.

    Sections in the override replace the packaged ones; ``replies`` is merged
    key by key. Either file is re-read when its mtime changes.
    """

    def __init__(
        self,
        *,
        default_path: Path = DEFAULT_CONTENT_PATH,
        override_path: Optional[Path] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.default_path = default_path
        self.override_path = override_path
        self._rng = rng or random.Random()
        self._menu = ""
        self._quotes: List[str] = []
        self._replies: Dict[str, str] = {}
        self._default_mtime: Optional[float] = None
        self._override_mtime: Optional[float] = None
        self._refresh()

    def _read_config(self, path: Optional[Path]) -> Dict[str, Any]:
        if path is None or not path.exists():
            return {}
        try:
            raw = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as exc:
            log.warning("failed to read content config %s: %s", path, exc)
            return {}
        return raw if isinstance(raw, dict) else {}

    def _load(self) -> None:
        base = self._read_config(self.default_path)
        override = self._read_config(self.override_path)

        menu = override.get("menu") or base.get("menu") or ""
        self._menu = str(menu).strip()

        quotes = override.get("quotes") or base.get("quotes") or []
        if isinstance(quotes, str):
            quotes = [quotes]
        self._quotes = [str(item).strip() for item in quotes if str(item or "").strip()]

        replies: Dict[str, str] = {}
        for source in (base.get("replies"), override.get("replies")):
            if isinstance(source, dict):
                for key, value in source.items():
                    if value is not None:
                        replies[str(key)] = str(value)
        self._replies = replies

    def _refresh(self) -> None:
        mtimes = []
        for path in (self.default_path, self.override_path):
            try:
                mtimes.append(path.stat().st_mtime if path and path.exists() else None)
            except OSError:
                mtimes.append(None)
        if mtimes != [self._default_mtime, self._override_mtime]:
            self._default_mtime, self._override_mtime = mtimes
            self._load()

    def menu(self) -> str:
        self._refresh()
        return self._menu

    def quotes(self) -> List[str]:
        self._refresh()
        return list(self._quotes)

    def random_quote(self) -> str:
        quotes = self.quotes()
        if not quotes:
            return ""
        return self._rng.choice(quotes)

    def reply(self, key: str, **fields: Any) -> str:
        self._refresh()
        template = self._replies.get(key)
        if template is None:
            log.warning("no reply text configured for %s", key)
            return key
        return template.format(**fields) if fields else template
