"""Tool configuration: smb.conf location, service name, and mount defaults."""

from __future__ import annotations

import tomllib
from dataclasses import asdict, dataclass, field
from pathlib import Path

import ubelt as ub

from .util import expand

SECTIONS = ('samba', 'mount')


@dataclass
class SambaConfig:
    conf_path: str = '/etc/samba/smb.conf'
    default_conf_path: str = '/usr/share/samba/smb.conf'
    service: str = 'smbd'
    lock_path: str = '/run/lock/nfsbridge-smbconf.lock'
    backup_suffix: str = '.bak'
    allow_firewall: bool = True


@dataclass
class MountConfig:
    scratch_root: str = '/mnt'
    share_prefix: str = 'nfsv3share'
    nfs_options: str = 'nolock,vers=3,proto=tcp'


@dataclass
class BridgeConfig:
    samba: SambaConfig = field(default_factory=SambaConfig)
    mount: MountConfig = field(default_factory=MountConfig)
    verbosity: int = 1

    def expanded_paths(self) -> 'BridgeConfig':
        self.samba.conf_path = expand(self.samba.conf_path)
        self.samba.default_conf_path = expand(self.samba.default_conf_path)
        self.samba.lock_path = expand(self.samba.lock_path)
        self.mount.scratch_root = expand(self.mount.scratch_root)
        return self


def default_config_path() -> Path:
    return Path(ub.Path.appdir('nfsbridge', type='config')) / 'config.toml'


def _toml_escape(s: str) -> str:
    return s.replace('\\', '\\\\').replace('"', '\\"')


def dump_toml(cfg: BridgeConfig) -> str:
    d = asdict(cfg)
    lines: list[str] = []
    for section, body in d.items():
        if isinstance(body, dict):
            lines.append(f'[{section}]')
            for k, v in body.items():
                if isinstance(v, bool):
                    lines.append(f'{k} = {"true" if v else "false"}')
                elif isinstance(v, int):
                    lines.append(f'{k} = {v}')
                else:
                    lines.append(f'{k} = "{_toml_escape(str(v))}"')
            lines.append('')
        elif section == 'verbosity' and body != 1:
            lines.append(f'{section} = {body}')
            lines.append('')
    return '\n'.join(lines).rstrip() + '\n'


def load(path: Path) -> BridgeConfig:
    raw = tomllib.loads(path.read_text(encoding='utf-8'))
    cfg = BridgeConfig()
    for section in SECTIONS:
        if section in raw and isinstance(raw[section], dict):
            obj = getattr(cfg, section)
            for k, v in raw[section].items():
                if hasattr(obj, k):
                    setattr(obj, k, v)
    if 'verbosity' in raw:
        cfg.verbosity = int(raw['verbosity'])
    return cfg


def load_or_default(path: Path | None = None) -> BridgeConfig:
    fpath = path or default_config_path()
    if not fpath.exists():
        return BridgeConfig().expanded_paths()
    return load(fpath).expanded_paths()


def save(path: Path, cfg: BridgeConfig) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(dump_toml(cfg), encoding='utf-8')
