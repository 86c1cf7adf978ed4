"""Tests for smb.conf share-block editing."""

from __future__ import annotations

import stat
from pathlib import Path

import pytest

from nfsbridge.errors import (
    ConfigWriteError,
    DuplicateShareError,
    ReloadFailedError,
)
from nfsbridge.smbconf import (
    SHARE_COMMENT,
    FileShareConfigStore,
    MemoryShareConfigStore,
    SambaShares,
    find_share_block,
    iter_share_blocks,
    render_share_block,
)

BASE_CONF = (
    '[global]\n'
    '   workgroup = WORKGROUP\n'
    '   server string = %h server\n'
    '\n'
    '[printers]\n'
    '   comment = All Printers\n'
    '   browseable = no\n'
)

TWO_SHARES = (
    '[global]\n'
    '   workgroup = WORKGROUP\n'
    '\n'
    '[mnt-a]\n'
    'comment = first\n'
    'path = /mnt/a\n'
    '\n'
    '[mnt-b]\n'
    'comment = second\n'
    'path = /mnt/b\n'
    'read only = no\n'
)


class Reloads:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.count = 0

    def __call__(self) -> None:
        self.count += 1
        if self.fail:
            raise ReloadFailedError('smbd: fail!', stage='reload')


def _shares(text: str, *, fail_reload: bool = False):
    store = MemoryShareConfigStore(text)
    reload = Reloads(fail=fail_reload)
    return store, reload, SambaShares(store, reload=reload)


def test_find_share_block_last_block_runs_to_eof() -> None:
    lines = TWO_SHARES.splitlines(keepends=True)
    block = find_share_block(lines, 'mnt-b')
    assert block is not None
    assert block.start == 7
    assert block.end == len(lines) - 1
    assert block.path == '/mnt/b'


def test_find_share_block_stops_before_next_header() -> None:
    lines = TWO_SHARES.splitlines(keepends=True)
    block = find_share_block(lines, 'mnt-a')
    assert block is not None
    assert (block.start, block.end) == (3, 6)
    assert block.path == '/mnt/a'


def test_find_share_block_header_match_is_exact() -> None:
    lines = TWO_SHARES.splitlines(keepends=True)
    assert find_share_block(lines, 'MNT-A') is None
    assert find_share_block(lines, 'mnt') is None
    assert find_share_block(['[mnt-a ]\n', 'path = /x\n'], 'mnt-a') is None


def test_find_share_block_path_whitespace_and_last_match() -> None:
    lines = [
        '[s]\n',
        '  path=/first  \n',
        'pathological = no\n',
        'path   =   /second\n',
        '[t]\n',
        'path = /other\n',
    ]
    block = find_share_block(lines, 's')
    assert block is not None
    assert block.path == '/second'
    assert block.end == 3


def test_find_share_block_without_trailing_newline() -> None:
    lines = ['[global]\n', '[s]\n', 'path = /mnt/s']
    block = find_share_block(lines, 's')
    assert block is not None
    assert (block.start, block.end, block.path) == (1, 2, '/mnt/s')


def test_iter_share_blocks_skips_reserved_sections() -> None:
    text = BASE_CONF + TWO_SHARES.split('\n\n', 1)[1]
    blocks = list(iter_share_blocks(text.splitlines(keepends=True)))
    assert [(b.name, b.path) for b in blocks] == [
        ('mnt-a', '/mnt/a'),
        ('mnt-b', '/mnt/b'),
    ]


def test_render_share_block_format() -> None:
    assert ''.join(render_share_block('mnt-data', '/mnt/data')) == (
        '[mnt-data]\n'
        f'comment = {SHARE_COMMENT}\n'
        'path = /mnt/data\n'
        'read only = no\n'
        'guest ok = yes\n'
        'browseable = yes\n'
    )


def test_add_share_appends_six_lines_and_reloads() -> None:
    store, reload, shares = _shares(BASE_CONF)
    block = shares.add_share('mnt-data', '/mnt/data')
    assert store.text.startswith(BASE_CONF)
    added = store.text[len(BASE_CONF):].splitlines()
    assert len(added) == 6
    assert added[0] == '[mnt-data]'
    assert 'path = /mnt/data' in added
    assert reload.count == 1
    assert (block.start, block.end) == (7, 12)


def test_add_share_rejects_duplicate_header() -> None:
    store, reload, shares = _shares(TWO_SHARES)
    with pytest.raises(DuplicateShareError):
        shares.add_share('mnt-a', '/mnt/elsewhere')
    assert store.text == TWO_SHARES
    assert reload.count == 0


def test_add_share_terminates_last_line() -> None:
    store, _, shares = _shares('[global]\nworkgroup = X')
    shares.add_share('s', '/mnt/s')
    assert store.text.startswith('[global]\nworkgroup = X\n[s]\n')


def test_add_remove_on_unterminated_file_keeps_added_newline() -> None:
    store, _, shares = _shares('[global]\nworkgroup = X')
    shares.add_share('s', '/mnt/s')
    assert shares.remove_share('s').found
    assert store.text == '[global]\nworkgroup = X\n'


def test_add_share_reload_failure_keeps_block() -> None:
    store, reload, shares = _shares(BASE_CONF, fail_reload=True)
    with pytest.raises(ReloadFailedError) as excinfo:
        shares.add_share('mnt-data', '/mnt/data')
    assert not isinstance(excinfo.value, ConfigWriteError)
    assert excinfo.value.share_name == 'mnt-data'
    assert excinfo.value.stage == 'add_share'
    assert '[mnt-data]\n' in store.text
    assert 'applied but not active' in str(excinfo.value)


def test_add_share_write_failure_is_distinct_from_reload_failure() -> None:
    class BrokenStore(MemoryShareConfigStore):
        def write_lines(self, lines):
            raise ConfigWriteError('disk full', stage='write')

    reload = Reloads()
    shares = SambaShares(BrokenStore(BASE_CONF), reload=reload)
    with pytest.raises(ConfigWriteError) as excinfo:
        shares.add_share('mnt-data', '/mnt/data')
    assert not isinstance(excinfo.value, ReloadFailedError)
    assert reload.count == 0


def test_remove_last_block_removes_header_to_eof() -> None:
    store, reload, shares = _shares(TWO_SHARES)
    removed = shares.remove_share('mnt-b')
    assert removed.found
    assert removed.path == '/mnt/b'
    lines = TWO_SHARES.splitlines(keepends=True)
    assert store.text == ''.join(lines[:7])
    assert reload.count == 1


def test_remove_middle_block_stops_before_next_header() -> None:
    store, _, shares = _shares(TWO_SHARES)
    removed = shares.remove_share('mnt-a')
    assert removed.path == '/mnt/a'
    lines = TWO_SHARES.splitlines(keepends=True)
    assert store.text == ''.join(lines[:3] + lines[7:])


def test_remove_missing_share_leaves_file_untouched() -> None:
    store, reload, shares = _shares(TWO_SHARES)
    removed = shares.remove_share('nope')
    assert not removed.found
    assert removed.path == ''
    assert store.text == TWO_SHARES
    assert store.backup_text is None
    assert reload.count == 0


def test_remove_twice_second_is_not_found() -> None:
    _, _, shares = _shares(TWO_SHARES)
    first = shares.remove_share('mnt-a')
    second = shares.remove_share('mnt-a')
    assert first.found and first.path == '/mnt/a'
    assert not second.found


def test_add_then_remove_returns_added_path() -> None:
    store, _, shares = _shares(BASE_CONF)
    shares.add_share('mnt-foo-bar', '/mnt/foo/bar')
    removed = shares.remove_share('mnt-foo-bar')
    assert removed.path == '/mnt/foo/bar'
    assert store.text == BASE_CONF


def test_remove_block_without_path_reports_empty_path() -> None:
    text = '[global]\n[odd]\ncomment = no path here\n'
    store, _, shares = _shares(text)
    removed = shares.remove_share('odd')
    assert removed.found
    assert removed.path == ''
    assert store.text == '[global]\n'


def test_remove_reload_failure_restores_backup() -> None:
    store, reload, shares = _shares(TWO_SHARES)
    reload.fail = True
    with pytest.raises(ReloadFailedError):
        shares.remove_share('mnt-a')
    assert store.text == TWO_SHARES
    # one reload for the removal, one after restoring
    assert reload.count == 2


def test_restore_backup_after_remove_is_byte_identical() -> None:
    store, reload, shares = _shares(TWO_SHARES)
    shares.remove_share('mnt-b')
    assert store.text != TWO_SHARES
    shares.restore_backup(share_name='mnt-b')
    assert store.text == TWO_SHARES
    assert reload.count == 2


def test_ensure_quota_command_inserts_after_global() -> None:
    text = (
        '[global]\n'
        '   workgroup = WORKGROUP\n'
        "   get quota command = '/old/query_quota'\n"
        '[s]\n'
        'path = /mnt/s\n'
    )
    store, reload, shares = _shares(text)
    assert shares.ensure_quota_command('/usr/bin/nfsbridge-quota') is True
    lines = store.text.splitlines()
    assert lines[1] == "get quota command = '/usr/bin/nfsbridge-quota'"
    assert sum('get quota command' in line for line in lines) == 1
    assert reload.count == 1
    assert shares.ensure_quota_command('/usr/bin/nfsbridge-quota') is False
    assert reload.count == 1


def test_ensure_quota_command_requires_global_section() -> None:
    _, _, shares = _shares('[s]\npath = /mnt/s\n')
    with pytest.raises(ConfigWriteError):
        shares.ensure_quota_command('/usr/bin/nfsbridge-quota')


def test_reset_archives_previous_config() -> None:
    store, reload, shares = _shares(TWO_SHARES)
    shares.reset(BASE_CONF.splitlines(keepends=True))
    assert store.text == BASE_CONF
    assert store.archives['.old'] == TWO_SHARES
    assert reload.count == 1


def test_memory_store_lock_is_reentrant() -> None:
    store = MemoryShareConfigStore('')
    with store.locked():
        with store.locked():
            pass
    assert store.lock_acquisitions == 1


def test_file_store_roundtrip_backup_and_restore(tmp_path: Path) -> None:
    conf = tmp_path / 'smb.conf'
    conf.write_text(TWO_SHARES, encoding='utf-8')
    conf.chmod(0o640)
    store = FileShareConfigStore(conf, lock_path=tmp_path / 'run' / 'smb.lock')
    reload = Reloads()
    shares = SambaShares(store, reload=reload)

    shares.add_share('mnt-c', '/mnt/c')
    removed = shares.remove_share('mnt-c')
    assert removed.path == '/mnt/c'
    assert conf.read_bytes() == TWO_SHARES.encode('utf-8')
    assert stat.S_IMODE(conf.stat().st_mode) == 0o640
    assert (tmp_path / 'run' / 'smb.lock').exists()

    shares.remove_share('mnt-a')
    backup = tmp_path / 'smb.conf.bak'
    assert backup.read_text(encoding='utf-8') == TWO_SHARES
    shares.restore_backup()
    assert conf.read_text(encoding='utf-8') == TWO_SHARES
    assert not backup.exists()


def test_file_store_restore_keeps_file_mode(tmp_path: Path) -> None:
    conf = tmp_path / 'smb.conf'
    conf.write_text(TWO_SHARES, encoding='utf-8')
    conf.chmod(0o640)
    store = FileShareConfigStore(conf, lock_path=tmp_path / 'lock')
    shares = SambaShares(store, reload=lambda: None)
    shares.remove_share('mnt-a')
    assert stat.S_IMODE((tmp_path / 'smb.conf.bak').stat().st_mode) == 0o640
    shares.restore_backup()
    assert conf.read_text(encoding='utf-8') == TWO_SHARES
    assert stat.S_IMODE(conf.stat().st_mode) == 0o640


def test_file_store_unusable_lock_path_is_config_error(tmp_path: Path) -> None:
    blocker = tmp_path / 'not-a-dir'
    blocker.write_text('')
    conf = tmp_path / 'smb.conf'
    conf.write_text(TWO_SHARES, encoding='utf-8')
    store = FileShareConfigStore(conf, lock_path=blocker / 'smb.lock')
    shares = SambaShares(store, reload=lambda: None)
    with pytest.raises(ConfigWriteError) as excinfo:
        shares.remove_share('mnt-a')
    assert excinfo.value.stage == 'lock'
    assert store._lock_file is None
    assert conf.read_text(encoding='utf-8') == TWO_SHARES


def test_file_store_missing_file_reads_empty(tmp_path: Path) -> None:
    store = FileShareConfigStore(
        tmp_path / 'absent.conf', lock_path=tmp_path / 'lock'
    )
    assert store.read_lines() == []
    shares = SambaShares(store, reload=lambda: None)
    assert shares.remove_share('x').found is False


def test_file_store_nested_lock_does_not_deadlock(tmp_path: Path) -> None:
    store = FileShareConfigStore(
        tmp_path / 'smb.conf', lock_path=tmp_path / 'lock'
    )
    with store.locked():
        with store.locked():
            store.write_lines(['[global]\n'])
    assert store._lock_file is None
    assert (tmp_path / 'smb.conf').read_text() == '[global]\n'


def test_file_store_archive(tmp_path: Path) -> None:
    conf = tmp_path / 'smb.conf'
    conf.write_text(TWO_SHARES, encoding='utf-8')
    store = FileShareConfigStore(conf, lock_path=tmp_path / 'lock')
    SambaShares(store, reload=lambda: None).reset(['[global]\n'])
    assert (tmp_path / 'smb.conf.old').read_text() == TWO_SHARES
    assert conf.read_text() == '[global]\n'
