import logging
import shutil
from pathlib import Path
from typing import List, Optional, Union

from swarm_tickets.core.clock import Clock, ensure_utc, utcnow

logger = logging.getLogger("swarm-tickets.backup")

DEFAULT_KEEP = 10


class BackupManager:
    """
    Timestamped copies of the ticket file, taken before each write.

    Backups are named ``<stem>-<timestamp>.json`` with a timestamp format
    that sorts lexicographically in time order, so rotation only needs a
    name sort. Failures are logged and reported as ``None``; they never stop
    the write that triggered them.
    """

    def __init__(
        self,
        source: Union[str, Path],
        backup_dir: Union[str, Path],
        keep: int = DEFAULT_KEEP,
        clock: Clock = utcnow,
    ):
        self.source = Path(source)
        self.backup_dir = Path(backup_dir)
        self.keep = keep
        self._clock = clock

    @property
    def prefix(self) -> str:
        return f"{self.source.stem}-"

    def backup_path_for(self, stamp) -> Path:
        token = ensure_utc(stamp).strftime("%Y-%m-%dT%H-%M-%S-%fZ")
        return self.backup_dir / f"{self.prefix}{token}{self.source.suffix or '.json'}"

    def list_backups(self) -> List[Path]:
        """Existing backups, oldest first."""
        if not self.backup_dir.is_dir():
            return []
        suffix = self.source.suffix or ".json"
        return sorted(
            path
            for path in self.backup_dir.iterdir()
            if path.is_file() and path.name.startswith(self.prefix) and path.name.endswith(suffix)
        )

    def create_backup(self) -> Optional[Path]:
        if not self.source.exists():
            return None
        try:
            self.backup_dir.mkdir(parents=True, exist_ok=True)
            target = self.backup_path_for(self._clock())
            shutil.copy2(self.source, target)
            self.rotate()
        except OSError as exc:
            logger.warning(f"Backup of {self.source} failed: {exc}")
            return None
        logger.debug(f"Backup created: {target}")
        return target

    def rotate(self) -> List[Path]:
        """Delete all but the newest ``keep`` backups; returns what was removed."""
        backups = self.list_backups()
        stale = backups[:-self.keep] if self.keep > 0 else backups
        for path in stale:
            path.unlink()
        if stale:
            logger.debug(f"Removed {len(stale)} old backup(s)")
        return stale
