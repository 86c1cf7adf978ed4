from __future__ import annotations

import sys
from pathlib import Path

import scriptconfig as scfg
from loguru import logger

from ..config import BridgeConfig, default_config_path, load_or_default
from ..errors import NFSBridgeError
from ..host import HostOps
from ..lifecycle import ShareLifecycleController
from ..smbconf import FileShareConfigStore, SambaShares

log = logger


class _BaseCommand(scfg.DataConfig):
    """Base options shared by all commands."""

    config = scfg.Value(
        None, help='Path to config TOML (default: ~/.config/nfsbridge/config.toml).'
    )
    verbose = scfg.Value(
        0,
        short_alias=['v'],
        isflag='counter',
        help='Increase verbosity (-v, -vv).',
    )


def _cfg_path(p: str | None) -> Path:
    return Path(p).expanduser().resolve() if p else default_config_path()


def _load_cfg(config_path: str | None) -> BridgeConfig:
    return load_or_default(_cfg_path(config_path))


def _host_ops(cfg: BridgeConfig) -> HostOps:
    return HostOps(
        service=cfg.samba.service, allow_firewall=cfg.samba.allow_firewall
    )


def _build_shares(
    cfg: BridgeConfig, ops: HostOps | None = None
) -> SambaShares:
    ops = ops or _host_ops(cfg)
    store = FileShareConfigStore(
        cfg.samba.conf_path,
        lock_path=cfg.samba.lock_path,
        backup_suffix=cfg.samba.backup_suffix,
    )
    return SambaShares(store, reload=ops.reload_service)


def _build_controller(cfg: BridgeConfig) -> ShareLifecycleController:
    ops = _host_ops(cfg)
    shares = _build_shares(cfg, ops)
    return ShareLifecycleController(
        shares,
        ops,
        scratch_root=cfg.mount.scratch_root,
        share_prefix=cfg.mount.share_prefix,
        nfs_options=cfg.mount.nfs_options,
    )


def _report_failure(ex: NFSBridgeError) -> int:
    print(f'ERROR: {ex}', file=sys.stderr)
    context = ', '.join(
        f'{k}={v}'
        for k, v in (
            ('share', ex.share_name),
            ('path', ex.path),
            ('stage', ex.stage),
        )
        if v
    )
    if context:
        log.error('{} ({})', type(ex).__name__, context)
    return 1


__all__ = [name for name in globals() if not name.startswith('__')]
