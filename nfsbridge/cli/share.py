"""CLI commands that mount, unmount, and list NFS-backed SMB shares."""

from __future__ import annotations

import sys
from pathlib import Path

import scriptconfig as scfg

from ..errors import NFSBridgeError
from ..host import check_commands
from ..lifecycle import MountDescriptor, MountParameterType
from ..quota import query_quota
from ._common import (
    _BaseCommand,
    _build_controller,
    _build_shares,
    _load_cfg,
    _report_failure,
    log,
)


class MountCLI(_BaseCommand):
    """Mount an NFSv3 export in the guest and share it over SMB."""

    mount_type = scfg.Value(
        'remotehost',
        position=1,
        help='Either "command" (full mount command line) or "remotehost" (host:/export).',
    )
    parameter = scfg.Value(
        '',
        position=2,
        help='The mount command line or the host:/account/container target.',
    )
    output = scfg.Value(
        '',
        position=3,
        help='Optional file that receives the generated share name.',
    )

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        cfg = _load_cfg(args.config)
        missing = check_commands()
        if missing:
            log.warning('Missing commands in guest: {}', ', '.join(missing))
        try:
            descriptor = MountDescriptor(
                MountParameterType.parse(args.mount_type), str(args.parameter)
            )
            mounted = _build_controller(cfg).mount(descriptor)
        except NFSBridgeError as ex:
            return _report_failure(ex)
        print(mounted.share_name)
        if args.output:
            out = Path(args.output)
            try:
                out.write_text(mounted.share_name + '\n', encoding='utf-8')
            except OSError as ex:
                return _report_failure(
                    NFSBridgeError(
                        f'Share [{mounted.share_name}] is exported, but its '
                        f'name could not be saved to {out}: {ex}',
                        share_name=mounted.share_name,
                        path=str(out),
                        stage='output',
                    )
                )
            log.debug('Saved the share name ({}) to {}', mounted.share_name, out)
        return 0


class UnmountCLI(_BaseCommand):
    """Remove an SMB share and unmount the NFS export behind it."""

    share_name = scfg.Value('', position=1, help='SMB share name to remove.')

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        name = str(args.share_name or '').strip()
        if not name:
            print('ERROR: share_name is required.', file=sys.stderr)
            return 1
        cfg = _load_cfg(args.config)
        try:
            outcome = _build_controller(cfg).unmount(name)
        except NFSBridgeError as ex:
            return _report_failure(ex)
        for msg in outcome.warnings:
            print(f'WARNING: {msg}', file=sys.stderr)
        print(f'Removed SMB share {name}.')
        return 0


class ListCLI(_BaseCommand):
    """List share blocks in smb.conf with their backing paths."""

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        cfg = _load_cfg(args.config)
        try:
            blocks = _build_shares(cfg).list_shares()
        except NFSBridgeError as ex:
            return _report_failure(ex)
        if not blocks:
            print('No shares found.')
            return 0
        for block in blocks:
            print(f'{block.name} | path={block.path or "(none)"}')
        return 0


class QuotaCLI(_BaseCommand):
    """Answer smbd's quota query for an NFSv3 share (always "no quota")."""

    directory = scfg.Value('.', position=1, help='Directory being queried.')
    query_type = scfg.Value(
        '1', position=2, help='1=user, 2=user default, 3=group, 4=group default.'
    )
    ident = scfg.Value('-1', position=3, help='uid or gid (-1 for defaults).')

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        try:
            report = query_quota(
                str(args.directory), str(args.query_type), str(args.ident)
            )
        except NFSBridgeError as ex:
            print(str(ex))
            return 1
        print(report.as_line())
        return 0
