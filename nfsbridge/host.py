"""Guest-side primitives: mount, unmount, smbd reload, read-ahead, and dirs."""

from __future__ import annotations

import os
from pathlib import Path

from loguru import logger

from .errors import ReloadFailedError
from .results import UnmountStatus
from .util import CmdResult, run_cmd, shell_split, which

log = logger

# umount(8) exit status when the target is not mounted anymore.
UMOUNT_NOT_MOUNTED_CODE = 32

READ_AHEAD_KB = 16384

REQUIRED_CMDS = ['mount', 'umount', 'mountpoint', 'service']


def check_commands() -> list[str]:
    return [c for c in REQUIRED_CMDS if which(c) is None]


def bdi_read_ahead_path(path: str | Path) -> Path:
    """Return the sysfs read-ahead knob for the device backing ``path``."""
    dev = os.stat(path).st_dev
    return Path(
        f'/sys/class/bdi/{os.major(dev)}:{os.minor(dev)}/read_ahead_kb'
    )


class HostOps:
    """Thin wrappers over the commands the lifecycle controller depends on.

    Each method returns a typed result or raises; exit codes do not leak out.
    """

    def __init__(self, *, service: str = 'smbd', allow_firewall: bool = True):
        self.service = service
        self.allow_firewall = allow_firewall

    def mount(self, invocation: str) -> CmdResult:
        argv = shell_split(invocation)
        return run_cmd(argv, sudo=True, check=False, capture=True)

    def unmount(self, path: str) -> UnmountStatus:
        res = run_cmd(['umount', path], sudo=True, check=False, capture=True)
        if res.code == 0:
            return UnmountStatus.UNMOUNTED
        if res.code == UMOUNT_NOT_MOUNTED_CODE:
            return UnmountStatus.ALREADY_UNMOUNTED
        log.error('umount {} failed (code={}): {}', path, res.code, res.output)
        return UnmountStatus.FAILED

    def reload_service(self) -> None:
        res = run_cmd(
            ['service', self.service, 'restart'],
            sudo=True,
            check=False,
            capture=True,
        )
        # The sysv wrapper can exit 0 while printing "... fail!".
        if res.code != 0 or 'fail' in res.output.lower():
            raise ReloadFailedError(
                f'Failed to restart {self.service} (code={res.code}): {res.output}',
                stage='reload',
            )
        if self.allow_firewall and which('ufw') is not None:
            fw = run_cmd(
                ['ufw', 'allow', 'samba'], sudo=True, check=False, capture=True
            )
            if fw.code != 0:
                log.warning('ufw allow samba failed: {}', fw.output)

    def set_read_ahead(self, path: str, size_kb: int = READ_AHEAD_KB) -> bool:
        try:
            knob = bdi_read_ahead_path(path)
        except OSError as ex:
            log.warning('Cannot stat {} to tune read-ahead: {}', path, ex)
            return False
        res = run_cmd(
            ['tee', str(knob)],
            sudo=True,
            check=False,
            capture=True,
            input_text=f'{size_kb}\n',
        )
        if res.code != 0:
            log.warning(
                'Failed to set read-ahead {} KiB via {}: {}',
                size_kb,
                knob,
                res.output,
            )
            return False
        log.debug('Set read-ahead to {} KiB via {}', size_kb, knob)
        return True

    def is_mount_point(self, path: str) -> bool:
        res = run_cmd(['mountpoint', '-q', path], check=False, capture=True)
        return res.code == 0

    def exists(self, path: str) -> bool:
        return os.path.lexists(path)

    def make_dir(self, path: str) -> None:
        Path(path).mkdir(parents=True, exist_ok=False)

    def remove_dir(self, path: str) -> None:
        # Non-recursive: fails if anything is left under the mount path.
        Path(path).rmdir()
