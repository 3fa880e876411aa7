"""Persistent store for graph connections (``~/.roam-tools.json``).

The store is the single source of truth for which graphs are configured.
Nothing caches its contents between calls, so connections added, removed or
marked revoked by another process show up on the very next read.

There is no file locking: concurrent writers race and the last write wins.
Writes only happen during setup, removal and token-status sync.
"""

import json
import logging
import os
import stat
import sys
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiofiles
from pydantic import ValidationError

from .models import CONFIG_VERSION, GraphConnection, RoamToolsConfig
from .utils.error_utils import ErrorCode, RoamError

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "ROAM_TOOLS_CONFIG"
DEFAULT_CONFIG_FILENAME = ".roam-tools.json"

# Process-lifetime "already warned" keys. Reset only by reset_warnings() in tests.
_warnings_shown: set = set()


def _warn_once(key: str, message: str, *args: Any) -> None:
    if key in _warnings_shown:
        return
    _warnings_shown.add(key)
    logger.warning(message, *args)


def reset_warnings() -> None:
    """Forget which one-time warnings were already emitted."""
    _warnings_shown.clear()


def get_config_path() -> Path:
    """Location of the config file, honouring ``ROAM_TOOLS_CONFIG``."""
    override = os.environ.get(CONFIG_ENV_VAR)
    if override:
        return Path(override).expanduser()
    return Path.home() / DEFAULT_CONFIG_FILENAME


def dedup_connections(connections: List[GraphConnection]) -> List[GraphConnection]:
    """Collapse same-name connections, keeping the hosted one.

    Order of first appearance is preserved. Offline records that lose to a
    hosted record are dropped from the returned view only.
    """
    by_name: Dict[str, GraphConnection] = {}
    dropped: List[str] = []
    for connection in connections:
        existing = by_name.get(connection.name)
        if existing is None:
            by_name[connection.name] = connection
        elif existing.type == "offline" and connection.type == "hosted":
            by_name[connection.name] = connection
            dropped.append(existing.nickname)
        elif existing.type != connection.type:
            dropped.append(connection.nickname)

    if dropped:
        _warn_once(
            "dedup",
            "Graphs configured as both hosted and offline; ignoring offline entries: %s",
            ", ".join(dropped),
        )
    return list(by_name.values())


class ConfigStore:
    """Read and mutate the set of configured graph connections.

    Args:
        path: Config file location (defaults to ``get_config_path()``)
    """

    def __init__(self, path: Optional[Path] = None):
        self._path = Path(path) if path is not None else get_config_path()

    @property
    def path(self) -> Path:
        return self._path

    # ========================================================================
    # Reading
    # ========================================================================

    async def _read_document(self) -> Dict[str, Any]:
        try:
            async with aiofiles.open(self._path, encoding="utf-8") as f:
                raw = await f.read()
        except FileNotFoundError as e:
            raise RoamError(
                f"No graphs configured ({self._path} not found). "
                "Run `roam connect` to connect a graph, then try again.",
                ErrorCode.CONFIG_NOT_FOUND,
            ) from e
        except UnicodeDecodeError as e:
            raise RoamError(
                f"Config file {self._path} is not valid UTF-8 text: {e}",
                ErrorCode.VALIDATION_ERROR,
            ) from e
        except OSError as e:
            raise RoamError(
                f"Config file {self._path} could not be read: {e}",
                ErrorCode.VALIDATION_ERROR,
            ) from e

        self._check_permissions()

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise RoamError(
                f"Config file {self._path} is not valid JSON: {e}",
                ErrorCode.VALIDATION_ERROR,
            ) from e

        if not isinstance(data, dict):
            raise RoamError(
                f"Config file {self._path} must contain a JSON object.",
                ErrorCode.VALIDATION_ERROR,
            )

        version = data.get("version", CONFIG_VERSION)
        if isinstance(version, int) and version > CONFIG_VERSION:
            raise RoamError(
                f"Config file {self._path} uses version {version}, but this build "
                f"only understands version {CONFIG_VERSION}. "
                "Please update roam-tools.",
                ErrorCode.CONFIG_TOO_NEW,
            )
        return data

    def _check_permissions(self) -> None:
        if sys.platform == "win32":
            return
        try:
            mode = stat.S_IMODE(self._path.stat().st_mode)
        except OSError:
            return
        if mode & (stat.S_IRWXG | stat.S_IRWXO):
            _warn_once(
                "permissions",
                "Config file %s is accessible by other users (mode %o); "
                "it contains API tokens. Run: chmod 600 %s",
                self._path,
                mode,
                self._path,
            )

    def _parse(self, data: Dict[str, Any]) -> RoamToolsConfig:
        try:
            return RoamToolsConfig.model_validate(data)
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'config'}: {err['msg']}"
                for err in e.errors()
            )
            raise RoamError(
                f"Invalid config file {self._path}: {problems}",
                ErrorCode.VALIDATION_ERROR,
            ) from e

    async def load_raw(self) -> List[GraphConnection]:
        """All stored connections, validated but not deduplicated."""
        data = await self._read_document()
        return list(self._parse(data).graphs)

    async def load(self) -> List[GraphConnection]:
        """Validated, deduplicated connections.

        Raises:
            RoamError: CONFIG_NOT_FOUND, CONFIG_TOO_NEW or VALIDATION_ERROR
        """
        return dedup_connections(await self.load_raw())

    async def load_safe(self) -> List[GraphConnection]:
        """Like ``load`` but an absent config file reads as no connections."""
        try:
            return await self.load()
        except RoamError as e:
            if e.code == ErrorCode.CONFIG_NOT_FOUND:
                return []
            raise

    async def _load_raw_or_empty(self) -> List[GraphConnection]:
        try:
            return await self.load_raw()
        except RoamError as e:
            if e.code == ErrorCode.CONFIG_NOT_FOUND:
                return []
            raise

    # ========================================================================
    # Writing
    # ========================================================================

    async def _write(self, connections: List[GraphConnection]) -> None:
        document = {
            "version": CONFIG_VERSION,
            "graphs": [c.to_config_dict() for c in connections],
        }
        self._path.parent.mkdir(parents=True, exist_ok=True)

        # mkstemp creates the file 0o600, so the token never hits disk world-readable
        fd, tmp = tempfile.mkstemp(
            dir=self._path.parent, prefix=f".{self._path.name}.", suffix=".tmp"
        )
        try:
            async with aiofiles.open(fd, "w", encoding="utf-8") as f:
                await f.write(json.dumps(document, indent=2) + "\n")
                await f.flush()
                os.fsync(fd)
            Path(tmp).replace(self._path)
        except BaseException:
            try:
                Path(tmp).unlink()
            except OSError:
                pass
            raise
        self._path.chmod(0o600)

    async def save(self, connection: GraphConnection) -> None:
        """Insert or replace a connection, keyed on ``(name, type)``.

        Raises:
            RoamError: NICKNAME_COLLISION if another graph already uses the nickname
        """
        connections = await self._load_raw_or_empty()

        nickname = connection.nickname.lower()
        for existing in connections:
            if existing.nickname.lower() == nickname and existing.identity != connection.identity:
                raise RoamError(
                    f"Nickname '{connection.nickname}' is already used by graph "
                    f"'{existing.name}' ({existing.type}). Please choose a different nickname.",
                    ErrorCode.NICKNAME_COLLISION,
                )

        for index, existing in enumerate(connections):
            if existing.identity == connection.identity:
                connections[index] = connection
                break
        else:
            connections.append(connection)

        await self._write(connections)
        logger.info(
            "graph_saved",
            extra={"graph.name": connection.name, "graph.nickname": connection.nickname},
        )

    async def remove(self, nickname: str) -> bool:
        """Remove the connection with this nickname (case-insensitive).

        Returns:
            True if a connection was removed, False if none matched
        """
        connections = await self._load_raw_or_empty()
        key = nickname.lower()
        remaining = [c for c in connections if c.nickname.lower() != key]
        if len(remaining) == len(connections):
            return False
        await self._write(remaining)
        logger.info("graph_removed", extra={"graph.nickname": nickname})
        return True

    async def update_status(
        self,
        nickname: str,
        access_level: Optional[str] = None,
        last_known_token_status: Optional[str] = None,
    ) -> bool:
        """Merge token status fields into a stored connection.

        Only fields that differ from what is stored are applied; if nothing
        differs the file is not touched at all.

        Returns:
            True if the config file was rewritten
        """
        connections = await self._load_raw_or_empty()
        key = nickname.lower()

        changed = False
        for index, connection in enumerate(connections):
            if connection.nickname.lower() != key:
                continue
            updates: Dict[str, Any] = {}
            if access_level is not None and access_level != connection.access_level:
                updates["access_level"] = access_level
            if (
                last_known_token_status is not None
                and last_known_token_status != connection.last_known_token_status
            ):
                updates["last_known_token_status"] = last_known_token_status
            if updates:
                connections[index] = GraphConnection.model_validate(
                    {**connection.model_dump(), **updates}
                )
                changed = True

        if not changed:
            return False

        await self._write(connections)
        logger.info(
            "graph_status_updated",
            extra={
                "graph.nickname": nickname,
                "access_level": access_level,
                "token_status": last_known_token_status,
            },
        )
        return True
