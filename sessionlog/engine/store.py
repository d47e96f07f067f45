from __future__ import annotations

import json
from dataclasses import asdict, is_dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from loguru import logger

from sessionlog.engine.records import SESSION_END, SESSION_START
from sessionlog.runtime.naming import filename_suffix


def _parse(line: str) -> Optional[Dict[str, Any]]:
    try:
        parsed = json.loads(line)
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


class LogStore:
    """
    Append-only JSONL store for session logs.
    One file per session inside `sessions_dir`; one JSON object per line.
    Single writer per file: rewrites are whole-file read-modify-write.
    """

    def __init__(self, sessions_dir: Path):
        self._dir = Path(sessions_dir)
        self._active: Optional[Path] = None

    @property
    def sessions_dir(self) -> Path:
        return self._dir

    @property
    def active_path(self) -> Optional[Path]:
        return self._active

    def ensure_dir(self) -> None:
        self._dir.mkdir(parents=True, exist_ok=True)

    def create(self, filename: str) -> Path:
        self.ensure_dir()
        path = self._dir / filename
        # same second + same id prefix: "~N" after the timestamp sorts after the original, keeps the suffix
        head, _, tail = filename.rpartition("_")
        n = 1
        while path.exists():
            n += 1
            path = self._dir / f"{head}~{n}_{tail}"
        if n > 1:
            logger.warning(f"{filename} already exists; logging to {path.name}")
        path.touch()
        self._active = path
        return path

    def adopt(self, path: Path) -> None:
        self._active = path

    def append(self, record: Any) -> None:
        # Calls before a file is resolved are dropped.
        if self._active is None:
            return
        payload = asdict(record) if is_dataclass(record) else record
        with self._active.open("a", encoding="utf-8") as f:
            f.write(json.dumps(payload, ensure_ascii=False))
            f.write("\n")

    @staticmethod
    def read_lines(path: Path) -> List[str]:
        if not path.exists():
            return []
        return [line for line in path.read_text(encoding="utf-8").splitlines() if line.strip()]

    @staticmethod
    def rewrite_lines(path: Path, lines: List[str]) -> None:
        content = "".join(f"{line}\n" for line in lines)
        path.write_text(content, encoding="utf-8")

    @classmethod
    def read_records(cls, path: Path) -> List[Dict[str, Any]]:
        records: List[Dict[str, Any]] = []
        for n, line in enumerate(cls.read_lines(path), start=1):
            parsed = _parse(line)
            if parsed is None:
                logger.warning(f"Skipping unreadable line {n} in {path.name}")
                continue
            records.append(parsed)
        return records

    def list_sessions(self) -> List[Path]:
        if not self._dir.exists():
            return []
        return sorted(self._dir.glob("*.jsonl"))

    def find_by_session_suffix(self, session_id: str) -> Optional[Path]:
        """
        Find the log file of a previously seen session.
        Files are matched on the short id prefix in their name; a file whose
        session_start names a different full id is a prefix collision and is skipped.
        """
        if not session_id or not self._dir.exists():
            return None

        suffix = filename_suffix(session_id)
        matches = []
        for path in sorted(self._dir.iterdir()):
            if not path.is_file() or not path.name.endswith(suffix):
                continue
            owner = self._owner_of(path)
            if owner is not None and owner != session_id:
                logger.warning(f"Log {path.name} belongs to session {owner}, not {session_id}; skipping")
                continue
            matches.append(path)

        if not matches:
            return None
        if len(matches) > 1:
            logger.warning(
                f"{len(matches)} log files match session {session_id}; using {matches[0].name}"
            )
        return matches[0]

    def _owner_of(self, path: Path) -> Optional[str]:
        lines = self.read_lines(path)
        if not lines:
            return None
        first = _parse(lines[0])
        if first is None or first.get("type") != SESSION_START:
            return None
        owner = first.get("session_id")
        return owner if isinstance(owner, str) and owner else None

    def rewrite_without_trailing_summary(self, path: Path) -> bool:
        """Drop the last line if it is a session_end record. Returns True if dropped."""
        lines = self.read_lines(path)
        if not lines:
            return False
        last = _parse(lines[-1])
        if last is None or last.get("type") != SESSION_END:
            return False
        self.rewrite_lines(path, lines[:-1])
        return True
