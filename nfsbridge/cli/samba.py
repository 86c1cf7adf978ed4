from __future__ import annotations

import sys
from pathlib import Path

import scriptconfig as scfg

from ..errors import NFSBridgeError
from ..util import which
from ._common import _BaseCommand, _build_shares, _load_cfg, _report_failure

QUOTA_SCRIPT = 'nfsbridge-quota'


class QuotaHookCLI(_BaseCommand):
    """Point smbd's "get quota command" at the no-op quota query."""

    command = scfg.Value(
        '',
        help=f'Quota command to register (default: resolved path of {QUOTA_SCRIPT}).',
    )

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        cfg = _load_cfg(args.config)
        command = str(args.command or '').strip()
        if not command:
            command = which(QUOTA_SCRIPT) or QUOTA_SCRIPT
        try:
            changed = _build_shares(cfg).ensure_quota_command(command)
        except NFSBridgeError as ex:
            return _report_failure(ex)
        if changed:
            print(f'Disabled quota support for all SMB shares via {command}.')
        else:
            print(f'get quota command is already set: {command}')
        return 0


class ResetCLI(_BaseCommand):
    """Replace smb.conf with the distribution default and reload smbd."""

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        cfg = _load_cfg(args.config)
        default = Path(cfg.samba.default_conf_path)
        if not default.exists():
            print(f'ERROR: default config not found: {default}', file=sys.stderr)
            return 1
        lines = default.read_text(encoding='utf-8').splitlines(keepends=True)
        try:
            _build_shares(cfg).reset(lines)
        except NFSBridgeError as ex:
            return _report_failure(ex)
        print(
            f'Successfully reset Samba setup (old config: {cfg.samba.conf_path}.old).'
        )
        return 0


class SambaModalCLI(scfg.ModalCLI):
    """smb.conf maintenance beyond individual shares."""

    quota_hook = QuotaHookCLI
    reset = ResetCLI
