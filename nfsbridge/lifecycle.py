"""Mount an NFSv3 export and publish it over SMB, or tear that down again.

Mount is conservative: it refuses existing paths and active mounts, and a
failed export unmounts what it just mounted. Unmount is lenient: a share or
mount that is already gone counts as success, and a failed umount restores
the share block it removed.
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from enum import Enum

from loguru import logger

from .errors import (
    AlreadyMountedError,
    ExportFailedError,
    InvalidMountSpecError,
    MountFailedError,
    NFSBridgeError,
    PathAlreadyInUseError,
    UnmountFailedError,
)
from .host import HostOps
from .results import MountedShare, UnmountOutcome, UnmountStatus
from .smbconf import SambaShares
from .util import shell_split

log = logger

# Upper bound of bash $RANDOM, kept so generated names look the same.
RANDOM_SUFFIX_MAX = 32767


class MountParameterType(Enum):
    COMMAND = 'command'
    REMOTE_HOST = 'remotehost'

    @classmethod
    def parse(cls, text: str) -> 'MountParameterType':
        norm = str(text or '').strip().lower().replace('-', '').replace('_', '')
        if norm == 'command':
            return cls.COMMAND
        if norm in {'remotehost', 'host', 'remote'}:
            return cls.REMOTE_HOST
        raise InvalidMountSpecError(
            f'Unknown mount parameter type {text!r}; use command or remotehost.',
            stage='parse',
        )


@dataclass(frozen=True)
class MountDescriptor:
    """What to mount: a full mount command line, or a ``host:/export`` target."""

    kind: MountParameterType
    parameter: str

    @classmethod
    def command(cls, invocation: str) -> 'MountDescriptor':
        return cls(MountParameterType.COMMAND, invocation)

    @classmethod
    def remote_host(cls, remote: str) -> 'MountDescriptor':
        return cls(MountParameterType.REMOTE_HOST, remote)

    @classmethod
    def from_account(
        cls, account_host: str, account_name: str, container_name: str
    ) -> 'MountDescriptor':
        return cls.remote_host(f'{account_host}:/{account_name}/{container_name}')


def share_name_for_path(mount_path: str) -> str:
    """``/mnt/foo/bar`` -> ``mnt-foo-bar``."""
    return mount_path[1:].replace('/', '-')


def mount_path_from_invocation(invocation: str) -> str:
    """Return the mount point, the last word of the mount command.

    Tokenized with the same splitter :meth:`HostOps.mount` runs, so a command
    that parses here is the command that gets executed.
    """
    try:
        tokens = shell_split(invocation)
    except ValueError as ex:
        raise InvalidMountSpecError(
            f'Cannot parse mount command {invocation!r}: {ex}', stage='parse'
        ) from ex
    if not tokens:
        raise InvalidMountSpecError('Mount command is empty.', stage='parse')
    mount_path = tokens[-1]
    if not mount_path.startswith('/'):
        raise InvalidMountSpecError(
            f'Mount point {mount_path} is not an absolute path.',
            path=mount_path,
            stage='parse',
        )
    return mount_path


def default_invocation(remote: str, mount_path: str, options: str) -> str:
    return f'mount -t nfs -o {options} {remote} {mount_path}'


class ShareLifecycleController:
    def __init__(
        self,
        shares: SambaShares,
        ops: HostOps,
        *,
        scratch_root: str = '/mnt',
        share_prefix: str = 'nfsv3share',
        nfs_options: str = 'nolock,vers=3,proto=tcp',
        rng: random.Random | None = None,
    ):
        self.shares = shares
        self.ops = ops
        self.scratch_root = scratch_root.rstrip('/') or '/'
        self.share_prefix = share_prefix
        self.nfs_options = nfs_options
        self.rng = rng or random.Random()

    def mount(self, descriptor: MountDescriptor) -> MountedShare:
        # One lock covers the scratch dir and the config file for the whole
        # sequence.
        with self.shares.store.locked():
            mount_path, share_name, invocation = self._prepare(descriptor)

            if self.ops.is_mount_point(mount_path):
                raise AlreadyMountedError(
                    f'Mount path {mount_path} is already mounted. '
                    'Use a different mount path.',
                    share_name=share_name,
                    path=mount_path,
                    stage='mount',
                )

            log.info('Mounting NFS share: {}', invocation)
            res = self.ops.mount(invocation)
            if not res.ok:
                self._discard_dir(mount_path)
                raise MountFailedError(
                    f'Failed to mount NFS share with: {invocation} '
                    f'(code={res.code}): {res.output}',
                    share_name=share_name,
                    path=mount_path,
                    stage='mount',
                )

            self.ops.set_read_ahead(mount_path)

            log.info('Exporting {} via Samba as [{}]', mount_path, share_name)
            try:
                self.shares.add_share(share_name, mount_path)
            except NFSBridgeError as ex:
                log.error('Export of {} failed; unmounting: {}', mount_path, ex)
                self._compensate_mount(mount_path)
                raise ExportFailedError(
                    f'Failed to export {mount_path} as SMB share '
                    f'[{share_name}] ({ex.stage or "add_share"}): {ex}',
                    share_name=share_name,
                    path=mount_path,
                    stage=ex.stage or 'add_share',
                ) from ex

        log.success('Created Samba share [{}] for {}', share_name, mount_path)
        return MountedShare(
            share_name=share_name, mount_path=mount_path, invocation=invocation
        )

    def unmount(self, share_name: str) -> UnmountOutcome:
        with self.shares.store.locked():
            removed = self.shares.remove_share(share_name)
            outcome = UnmountOutcome(share_name=share_name, path=removed.path)
            if not removed.found:
                outcome.warnings.append(f'No SMB share found for {share_name}.')
                return outcome
            if not removed.path:
                outcome.warnings.append(f'No backing dir found for {share_name}.')
                return outcome

            mount_path = removed.path
            if not self.ops.is_mount_point(mount_path):
                msg = f'Mount path {mount_path} is not mounted.'
                log.warning(msg)
                outcome.warnings.append(msg)
                return outcome

            status = self.ops.unmount(mount_path)
            if status is UnmountStatus.FAILED:
                self._restore_share_config(share_name, mount_path)
                raise UnmountFailedError(
                    f'Failed to unmount NFS share at {mount_path}; '
                    f'restored SMB share [{share_name}].',
                    share_name=share_name,
                    path=mount_path,
                    stage='unmount',
                )
            if status is UnmountStatus.ALREADY_UNMOUNTED:
                msg = f'NFS share at {mount_path} was already unmounted.'
                log.warning(msg)
                outcome.warnings.append(msg)

            try:
                self.ops.remove_dir(mount_path)
            except OSError as ex:
                msg = f'Could not remove mount dir {mount_path}: {ex}'
                log.warning(msg)
                outcome.warnings.append(msg)

        log.success('Unmounted NFS mount {} and removed [{}]', mount_path, share_name)
        return outcome

    def _prepare(self, descriptor: MountDescriptor) -> tuple[str, str, str]:
        """Pick and create the local mount dir; return (path, share, command)."""
        if descriptor.kind is MountParameterType.COMMAND:
            invocation = descriptor.parameter.strip()
            mount_path = mount_path_from_invocation(invocation)
            share_name = share_name_for_path(mount_path)
            if self.ops.exists(mount_path):
                raise PathAlreadyInUseError(
                    f'Mount point {mount_path} already exists. '
                    'Use a different mount point.',
                    share_name=share_name,
                    path=mount_path,
                    stage='prepare',
                )
        else:
            remote = descriptor.parameter.strip()
            if not remote:
                raise InvalidMountSpecError(
                    'Remote host parameter is empty.', stage='parse'
                )
            while True:
                suffix = self.rng.randint(0, RANDOM_SUFFIX_MAX)
                share_name = f'{self.share_prefix}-{suffix}'
                mount_path = f'{self.scratch_root.rstrip("/")}/{share_name}'
                if not self.ops.exists(mount_path):
                    break
            invocation = default_invocation(remote, mount_path, self.nfs_options)
            mount_path_from_invocation(invocation)
        log.debug('Mount command is: {}', invocation)

        try:
            self.ops.make_dir(mount_path)
        except FileExistsError as ex:
            raise PathAlreadyInUseError(
                f'Mount point {mount_path} already exists.',
                share_name=share_name,
                path=mount_path,
                stage='prepare',
            ) from ex
        except OSError as ex:
            raise MountFailedError(
                f'Failed to create mount point {mount_path}: {ex}',
                share_name=share_name,
                path=mount_path,
                stage='prepare',
            ) from ex
        log.debug('Created {}', mount_path)
        return mount_path, share_name, invocation

    def _discard_dir(self, mount_path: str) -> None:
        try:
            self.ops.remove_dir(mount_path)
        except OSError as ex:
            log.warning('Could not remove mount dir {}: {}', mount_path, ex)

    def _compensate_mount(self, mount_path: str) -> None:
        status = self.ops.unmount(mount_path)
        if status is UnmountStatus.FAILED:
            log.error(
                'Rollback could not unmount {}; unmount it by hand.', mount_path
            )
            return
        self._discard_dir(mount_path)

    def _restore_share_config(self, share_name: str, mount_path: str) -> None:
        try:
            self.shares.restore_backup(share_name=share_name)
        except NFSBridgeError as ex:
            raise UnmountFailedError(
                f'Failed to unmount NFS share at {mount_path} and failed to '
                f'restore SMB share [{share_name}]: {ex}',
                share_name=share_name,
                path=mount_path,
                stage='restore',
            ) from ex
