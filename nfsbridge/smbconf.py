"""Share-block editing for smb.conf.

The file is treated as a flat sequence of lines. A share block starts at its
``[name]`` header and runs up to the line before the next header, or to the
end of the file when it is the last block. Blocks never nest or overlap.

Storage is pluggable: :class:`FileShareConfigStore` edits the real file under
an advisory ``fcntl`` lock and keeps a backup copy for rollback, while
:class:`MemoryShareConfigStore` holds the text in memory for tests.

Example:
    >>> from nfsbridge.smbconf import MemoryShareConfigStore, SambaShares
    >>> store = MemoryShareConfigStore('[global]\\nworkgroup = WORKGROUP\\n')
    >>> shares = SambaShares(store, reload=lambda: None)
    >>> _ = shares.add_share('mnt-data', '/mnt/data')
    >>> shares.remove_share('mnt-data').path
    '/mnt/data'
    >>> store.text
    '[global]\\nworkgroup = WORKGROUP\\n'
"""

from __future__ import annotations

import fcntl
import os
import re
import shutil
import tempfile
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import Callable, Iterator, Sequence

from loguru import logger

from .errors import ConfigWriteError, DuplicateShareError, ReloadFailedError
from .results import RemovedShare, ShareBlock

log = logger

SHARE_COMMENT = 'Samba on NFSv3 WSL2 setup by Blob NFS scripts'
RESERVED_SECTIONS = {'global', 'homes', 'printers', 'print$'}
QUOTA_COMMAND_KEY = 'get quota command'

_PATH_RE = re.compile(r'^\s*path\s*=\s*(.*?)\s*$')


class _ScanState(Enum):
    SEARCHING = 'searching'
    IN_BLOCK = 'in_block'
    DONE = 'done'


def _strip_eol(line: str) -> str:
    return line.rstrip('\r\n')


def is_header(line: str) -> bool:
    text = _strip_eol(line).strip()
    return len(text) >= 2 and text.startswith('[') and text.endswith(']')


def header_name(line: str) -> str:
    return _strip_eol(line).strip()[1:-1]


def find_share_block(lines: Sequence[str], name: str) -> ShareBlock | None:
    """Locate the block headed by ``[name]``.

    Returns the inclusive ``(start, end)`` line indices and the value of the
    last ``path =`` line inside the block, or None if no header matches.
    """
    header = f'[{name}]'
    state = _ScanState.SEARCHING
    start = end = -1
    path = ''
    for idx, raw in enumerate(lines):
        line = _strip_eol(raw)
        if state is _ScanState.SEARCHING:
            if line == header:
                state = _ScanState.IN_BLOCK
                start = idx
            continue
        if is_header(line) and line != header:
            end = idx - 1
            state = _ScanState.DONE
            break
        match = _PATH_RE.match(line)
        if match:
            path = match.group(1)
    if state is _ScanState.SEARCHING:
        return None
    if state is _ScanState.IN_BLOCK:
        # Last block in the file: it runs to EOF.
        end = len(lines) - 1
    return ShareBlock(name=name, start=start, end=end, path=path)


def iter_share_blocks(lines: Sequence[str]) -> Iterator[ShareBlock]:
    """Yield every non-reserved section of the file as a share block."""
    headers = [
        (idx, header_name(line))
        for idx, line in enumerate(lines)
        if is_header(line)
    ]
    for pos, (start, name) in enumerate(headers):
        if pos + 1 < len(headers):
            end = headers[pos + 1][0] - 1
        else:
            end = len(lines) - 1
        if name.lower() in RESERVED_SECTIONS:
            continue
        path = ''
        for line in lines[start + 1 : end + 1]:
            match = _PATH_RE.match(_strip_eol(line))
            if match:
                path = match.group(1)
        yield ShareBlock(name=name, start=start, end=end, path=path)


def render_share_block(name: str, path: str) -> list[str]:
    return [
        f'[{name}]\n',
        f'comment = {SHARE_COMMENT}\n',
        f'path = {path}\n',
        'read only = no\n',
        'guest ok = yes\n',
        'browseable = yes\n',
    ]


class ShareConfigStore:
    """Line storage for smb.conf with a backup slot and a re-entrant lock."""

    def __init__(self) -> None:
        self._lock_depth = 0

    @contextmanager
    def locked(self) -> Iterator['ShareConfigStore']:
        if self._lock_depth == 0:
            self._acquire()
        self._lock_depth += 1
        try:
            yield self
        finally:
            self._lock_depth -= 1
            if self._lock_depth == 0:
                self._release()

    def _acquire(self) -> None:
        pass

    def _release(self) -> None:
        pass

    def describe(self) -> str:
        raise NotImplementedError

    def read_lines(self) -> list[str]:
        raise NotImplementedError

    def write_lines(self, lines: Sequence[str]) -> None:
        raise NotImplementedError

    def backup(self) -> None:
        raise NotImplementedError

    def restore_backup(self) -> None:
        raise NotImplementedError

    def archive(self, suffix: str) -> None:
        raise NotImplementedError


class FileShareConfigStore(ShareConfigStore):
    def __init__(
        self,
        conf_path: str | Path,
        *,
        lock_path: str | Path,
        backup_suffix: str = '.bak',
    ) -> None:
        super().__init__()
        self.conf_path = Path(conf_path)
        self.lock_path = Path(lock_path)
        self.backup_path = Path(f'{self.conf_path}{backup_suffix}')
        self._lock_file = None

    def describe(self) -> str:
        return str(self.conf_path)

    def _acquire(self) -> None:
        try:
            self.lock_path.parent.mkdir(parents=True, exist_ok=True)
            self._lock_file = open(self.lock_path, 'a')
            log.debug('Waiting for lock {}', self.lock_path)
            fcntl.flock(self._lock_file, fcntl.LOCK_EX)
        except OSError as ex:
            if self._lock_file is not None:
                self._lock_file.close()
                self._lock_file = None
            raise ConfigWriteError(
                f'Failed to lock {self.lock_path}: {ex}',
                path=str(self.lock_path),
                stage='lock',
            ) from ex

    def _release(self) -> None:
        if self._lock_file is None:
            return
        try:
            fcntl.flock(self._lock_file, fcntl.LOCK_UN)
        finally:
            self._lock_file.close()
            self._lock_file = None

    def read_lines(self) -> list[str]:
        if not self.conf_path.exists():
            return []
        try:
            text = self.conf_path.read_text(encoding='utf-8')
        except OSError as ex:
            raise ConfigWriteError(
                f'Failed to read {self.conf_path}: {ex}',
                path=str(self.conf_path),
                stage='read',
            ) from ex
        return text.splitlines(keepends=True)

    def write_lines(self, lines: Sequence[str]) -> None:
        # Write next to the target and rename so smbd never sees a torn file.
        parent = self.conf_path.parent
        try:
            parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(
                prefix=f'.{self.conf_path.name}.', dir=str(parent)
            )
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                f.write(''.join(lines))
            if self.conf_path.exists():
                shutil.copymode(self.conf_path, tmp)
            os.replace(tmp, self.conf_path)
        except OSError as ex:
            raise ConfigWriteError(
                f'Failed to write {self.conf_path}: {ex}',
                path=str(self.conf_path),
                stage='write',
            ) from ex

    def backup(self) -> None:
        try:
            self.backup_path.unlink(missing_ok=True)
            shutil.copy2(self.conf_path, self.backup_path)
        except OSError as ex:
            raise ConfigWriteError(
                f'Failed to back up {self.conf_path}: {ex}',
                path=str(self.backup_path),
                stage='backup',
            ) from ex
        log.debug('Backed up {} to {}', self.conf_path, self.backup_path)

    def restore_backup(self) -> None:
        try:
            os.replace(self.backup_path, self.conf_path)
        except OSError as ex:
            raise ConfigWriteError(
                f'Failed to restore {self.conf_path} from {self.backup_path}: {ex}',
                path=str(self.backup_path),
                stage='restore',
            ) from ex
        log.debug('Restored {} from {}', self.conf_path, self.backup_path)

    def archive(self, suffix: str) -> None:
        dst = Path(f'{self.conf_path}{suffix}')
        if not self.conf_path.exists():
            return
        try:
            shutil.copyfile(self.conf_path, dst)
        except OSError as ex:
            raise ConfigWriteError(
                f'Failed to save {self.conf_path} as {dst}: {ex}',
                path=str(dst),
                stage='archive',
            ) from ex


class MemoryShareConfigStore(ShareConfigStore):
    """In-memory store used in tests and dry runs."""

    def __init__(self, text: str = '') -> None:
        super().__init__()
        self.text = text
        self.backup_text: str | None = None
        self.archives: dict[str, str] = {}
        self.lock_acquisitions = 0

    def describe(self) -> str:
        return '<memory>'

    def _acquire(self) -> None:
        self.lock_acquisitions += 1

    def read_lines(self) -> list[str]:
        return self.text.splitlines(keepends=True)

    def write_lines(self, lines: Sequence[str]) -> None:
        self.text = ''.join(lines)

    def backup(self) -> None:
        self.backup_text = self.text

    def restore_backup(self) -> None:
        if self.backup_text is None:
            raise ConfigWriteError(
                'No backup to restore', path='<memory>', stage='restore'
            )
        self.text = self.backup_text
        self.backup_text = None

    def archive(self, suffix: str) -> None:
        self.archives[suffix] = self.text


class SambaShares:
    """Add, remove, and restore share blocks, reloading smbd after each edit.

    ``reload`` must raise :class:`ReloadFailedError` when the service does not
    come back.
    """

    def __init__(
        self, store: ShareConfigStore, reload: Callable[[], None]
    ) -> None:
        self.store = store
        self._reload_service = reload

    def list_shares(self) -> list[ShareBlock]:
        return list(iter_share_blocks(self.store.read_lines()))

    def add_share(self, name: str, path: str) -> ShareBlock:
        """Append a share block and reload.

        A reload failure leaves the new block in place; the raised
        :class:`ReloadFailedError` means "applied but not active".

        An unterminated last line gets a newline before the block is
        appended, and removing the block later does not take it away again.
        """
        with self.store.locked():
            lines = self.store.read_lines()
            if find_share_block(lines, name) is not None:
                raise DuplicateShareError(
                    f"Share '{name}' already exists in {self.store.describe()}.",
                    share_name=name,
                    path=path,
                    stage='add_share',
                )
            if lines and not lines[-1].endswith('\n'):
                lines[-1] += '\n'
            block_lines = render_share_block(name, path)
            start = len(lines)
            lines.extend(block_lines)
            self.store.write_lines(lines)
            log.info(
                'Added share [{}] path={} to {}', name, path, self.store.describe()
            )
            self._reload(stage='add_share', share_name=name, path=path)
        return ShareBlock(
            name=name, start=start, end=start + len(block_lines) - 1, path=path
        )

    def remove_share(self, name: str) -> RemovedShare:
        """Delete the share block and reload.

        A missing share is not an error: the result has ``found=False``. The
        pre-edit file is kept as a backup so :meth:`restore_backup` can undo
        the removal if a later step fails.
        """
        with self.store.locked():
            lines = self.store.read_lines()
            block = find_share_block(lines, name)
            if block is None:
                log.warning('No SMB share found for {}', name)
                return RemovedShare(name=name, found=False)
            self.store.backup()
            del lines[block.start : block.end + 1]
            self.store.write_lines(lines)
            log.info(
                'Removed share [{}] (lines {}-{}) from {}',
                name,
                block.start + 1,
                block.end + 1,
                self.store.describe(),
            )
            try:
                self._reload(stage='remove_share', share_name=name, path=block.path)
            except ReloadFailedError:
                log.error('Reload failed after removing [{}]; restoring config', name)
                self.restore_backup(share_name=name)
                raise
        if not block.path:
            log.warning('Share [{}] had no path line; no backing dir', name)
        return RemovedShare(name=name, found=True, path=block.path)

    def restore_backup(self, *, share_name: str = '') -> None:
        """Put back the file saved by the last removal and reload."""
        with self.store.locked():
            self.store.restore_backup()
            log.warning('Restored {} from backup', self.store.describe())
            self._reload(stage='restore', share_name=share_name)

    def ensure_quota_command(self, command: str) -> bool:
        """Make ``[global]`` carry exactly one ``get quota command`` line.

        Returns False when the exact line was already present.
        """
        entry = f"{QUOTA_COMMAND_KEY} = '{command}'"
        with self.store.locked():
            lines = self.store.read_lines()
            if any(_strip_eol(line) == entry for line in lines):
                log.debug('get quota command already set: {}', entry)
                return False
            kept = [line for line in lines if QUOTA_COMMAND_KEY not in line]
            global_idx = next(
                (
                    idx
                    for idx, line in enumerate(kept)
                    if is_header(line) and header_name(line).lower() == 'global'
                ),
                None,
            )
            if global_idx is None:
                raise ConfigWriteError(
                    f'No [global] section in {self.store.describe()}',
                    path=self.store.describe(),
                    stage='quota_hook',
                )
            kept.insert(global_idx + 1, entry + '\n')
            self.store.write_lines(kept)
            log.info('Set {} in [global]', entry)
            self._reload(stage='quota_hook')
        return True

    def reset(self, default_lines: Sequence[str], *, archive_suffix: str = '.old') -> None:
        """Replace the config with the distribution default, keeping a copy."""
        with self.store.locked():
            self.store.archive(archive_suffix)
            self.store.write_lines(list(default_lines))
            log.info(
                'Reset {} (previous copy saved with suffix {})',
                self.store.describe(),
                archive_suffix,
            )
            self._reload(stage='reset')

    def _reload(self, *, stage: str, share_name: str = '', path: str = '') -> None:
        try:
            self._reload_service()
        except ReloadFailedError as ex:
            raise ReloadFailedError(
                f'SMB service reload failed during {stage}; '
                f'{self.store.describe()} is applied but not active: {ex}',
                share_name=share_name,
                path=path,
                stage=stage,
            ) from ex
