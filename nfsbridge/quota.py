"""No-op quota query for smbd's ``get quota command`` hook.

NFSv3 exports carry no quota information, so every query reports "no quotas"
with zero counters. smbd calls the hook as ``<cmd> <directory> <type> <id>``
and reads one line of eight space-separated columns:

1. quota flags (0 = none, 1 = enabled, 2 = enabled and enforced)
2-4. used, soft-limit, and hard-limit blocks
5-7. used, soft-limit, and hard-limit inodes
8. bytes per block

Query types are 1 (user), 2 (user default, id -1), 3 (group), and
4 (group default, id -1).
"""

from __future__ import annotations

import os
import sys
from dataclasses import astuple, dataclass
from pathlib import Path

from loguru import logger

from .errors import QuotaQueryError

log = logger

QUERY_TYPES = {
    1: 'user',
    2: 'user-default',
    3: 'group',
    4: 'group-default',
}


@dataclass(frozen=True)
class QuotaReport:
    flags: int = 0
    used_blocks: int = 0
    soft_blocks: int = 0
    hard_blocks: int = 0
    used_inodes: int = 0
    soft_inodes: int = 0
    hard_inodes: int = 0
    block_size: int = 1024

    def as_line(self) -> str:
        return ' '.join(str(v) for v in astuple(self))


def resolve_directory(directory: str) -> Path:
    if directory == '.':
        return Path(os.getcwd())
    return Path(directory)


def query_quota(directory: str, query_type: str | int, ident: str | int) -> QuotaReport:
    path = resolve_directory(directory)
    if not path.is_dir():
        raise QuotaQueryError(
            f'Directory {directory} does not exist', path=str(path), stage='quota'
        )
    try:
        qtype = int(query_type)
    except (TypeError, ValueError):
        qtype = 0
    if qtype not in QUERY_TYPES:
        raise QuotaQueryError(f'Type {query_type} is not valid', stage='quota')
    try:
        qid = int(ident)
    except (TypeError, ValueError):
        qid = -2
    if qid < -1:
        raise QuotaQueryError(f'Uid/Gid {ident} is not valid', stage='quota')
    log.debug(
        'Quota query dir={} type={} id={}: no quotas on NFSv3',
        path,
        QUERY_TYPES[qtype],
        qid,
    )
    return QuotaReport()


def main(argv: list[str] | None = None) -> int:
    """Entry point for ``nfsbridge-quota``, which smbd invokes directly."""
    if argv is None:
        argv = sys.argv[1:]
    # smbd parses stdout; keep loguru quiet unless something goes wrong.
    logger.remove()
    logger.add(sys.stderr, level='WARNING')
    if len(argv) != 3:
        print('Usage: nfsbridge-quota <directory> <type> <uid/gid>')
        return 1
    try:
        report = query_quota(*argv)
    except QuotaQueryError as ex:
        print(str(ex))
        return 1
    print(report.as_line())
    return 0


if __name__ == '__main__':
    sys.exit(main())
