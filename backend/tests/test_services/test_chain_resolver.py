from __future__ import annotations

import asyncio
import os
from datetime import datetime, timedelta

import pytest

from stackvault.domain.enums import BackupKind
from stackvault.domain.errors import ArchiveCorrupt, ChainBroken, NoFullBackup
from stackvault.services.backups import BackupChainBuilder
from stackvault.services.chains import RestoreChainResolver
from stackvault.services.snapshots import SnapshotStore

D1 = datetime(2024, 5, 1, 3, 0, 0)
D2 = D1 + timedelta(days=1)
D3 = D1 + timedelta(days=2)


@pytest.fixture()
def store(tmp_path) -> SnapshotStore:
    return SnapshotStore(str(tmp_path / "configs"))


@pytest.fixture()
def resolver(store, fake_codec) -> RestoreChainResolver:
    return RestoreChainResolver(store, fake_codec)


@pytest.fixture()
def three_sets(tmp_path, store, fake_codec):
    source = tmp_path / "appdata"
    source.mkdir()
    (source / "f.txt").write_text("x")
    builder = BackupChainBuilder(store, fake_codec)
    for ts in (D1, D2, D3):
        asyncio.run(builder.create_backup(str(source), timestamp=ts))
    return builder, str(source)


def test_resolves_full_then_incrementals(three_sets, resolver) -> None:
    chain = resolver.resolve(D3)
    assert [m.timestamp for m in chain] == [D1, D2, D3]
    assert [m.kind for m in chain] == [BackupKind.FULL, BackupKind.INCREMENTAL, BackupKind.INCREMENTAL]
    assert chain.final_timestamp == D3


def test_missing_middle_incremental_breaks_chain(three_sets, store, resolver) -> None:
    store.delete_set(store.get(D2))
    with pytest.raises(ChainBroken):
        resolver.resolve(D3)


def test_resolution_is_idempotent(three_sets, resolver) -> None:
    first = resolver.resolve(D3)
    second = resolver.resolve(D3)
    assert first.members == second.members


def test_target_between_sets_stops_at_target(three_sets, resolver) -> None:
    chain = resolver.resolve(D2 + timedelta(hours=5))
    assert [m.timestamp for m in chain] == [D1, D2]


def test_default_target_is_newest_set(three_sets, resolver) -> None:
    assert resolver.latest_timestamp() == D3
    assert resolver.resolve().final_timestamp == D3


def test_target_before_first_full(three_sets, resolver) -> None:
    with pytest.raises(NoFullBackup):
        resolver.resolve(D1 - timedelta(seconds=1))


def test_empty_store_has_no_full(resolver) -> None:
    with pytest.raises(NoFullBackup):
        resolver.resolve()


def test_corrupt_member_fails_closed(three_sets, store, resolver) -> None:
    with open(store.get(D2).archive_path, "w", encoding="utf-8") as fh:
        fh.write("garbage")
    with pytest.raises(ArchiveCorrupt):
        resolver.resolve(D3)
    # without verification the structure is still valid
    assert len(resolver.resolve(D3, verify=False)) == 3


def test_member_without_metadata_breaks_chain(three_sets, store, resolver) -> None:
    os.remove(store.get(D2).archive_path + ".meta.json")
    assert store.get(D2).kind == BackupKind.UNKNOWN
    with pytest.raises(ChainBroken):
        resolver.resolve(D3)


def test_new_full_roots_a_new_chain(three_sets, store, resolver) -> None:
    builder, source = three_sets
    os.remove(store.marker_path)
    d4 = D3 + timedelta(days=1)
    d5 = d4 + timedelta(days=1)
    asyncio.run(builder.create_backup(source, timestamp=d4))
    asyncio.run(builder.create_backup(source, timestamp=d5))

    assert [m.timestamp for m in resolver.resolve(d5)] == [d4, d5]
    # older points in time still resolve against the first lineage
    assert [m.timestamp for m in resolver.resolve(D3)] == [D1, D2, D3]
