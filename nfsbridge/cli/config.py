from __future__ import annotations

import sys

import scriptconfig as scfg

from ..config import BridgeConfig, dump_toml, save
from ._common import _BaseCommand, _cfg_path, _load_cfg


class InitCLI(_BaseCommand):
    """Write the default tool config."""

    force = scfg.Value(
        False, isflag=True, help='Overwrite an existing config file.'
    )

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        path = _cfg_path(args.config)
        if path.exists() and not args.force:
            print(f'Config already exists: {path}', file=sys.stderr)
            print('Use --force to overwrite it.', file=sys.stderr)
            return 1
        save(path, BridgeConfig())
        print(f'Wrote config: {path}')
        return 0


class ConfigShowCLI(_BaseCommand):
    """Show the resolved config (defaults when no file exists)."""

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        path = _cfg_path(args.config)
        print(f'# Config: {path}{"" if path.exists() else " (defaults)"}')
        print(dump_toml(_load_cfg(args.config)), end='')
        return 0


class ConfigModalCLI(scfg.ModalCLI):
    """Inspect and initialize the nfsbridge config."""

    init = InitCLI
    show = ConfigShowCLI
