from __future__ import annotations

import asyncio
import gzip
import hashlib
import io
import os
import shutil
import subprocess
import tarfile
from datetime import datetime, timedelta

import pytest
import zstandard

from stackvault.core.runtime.archive import TarZstdCodec, compression_threads
from stackvault.domain.errors import ArchiveCorrupt
from stackvault.domain.types import BackupChain
from stackvault.services.backups import BackupChainBuilder
from stackvault.services.chains import RestoreChainResolver
from stackvault.services.health import HealthVerifier
from stackvault.services.restores import RestoreScheduler
from stackvault.services.snapshots import SnapshotStore


def _gnu_tar_available() -> bool:
    tar = shutil.which("tar")
    if tar is None:
        return False
    out = subprocess.run([tar, "--version"], capture_output=True, text=True, check=False)
    return "GNU tar" in out.stdout


requires_gnu_tar = pytest.mark.skipif(not _gnu_tar_available(), reason="GNU tar not available")


def _tar_bytes(files: dict) -> bytes:
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w") as tar:
        for name, content in files.items():
            info = tarfile.TarInfo(name=name)
            info.size = len(content)
            tar.addfile(info, io.BytesIO(content))
    return buf.getvalue()


def test_compression_threads_is_a_fraction_of_cpus() -> None:
    assert compression_threads(0.75, cpu_count=8) == 6
    assert compression_threads(0.75, cpu_count=1) == 1
    assert compression_threads(0.1, cpu_count=4) == 1


def test_self_test_accepts_complete_zstd_archive(tmp_path) -> None:
    path = tmp_path / "appdata_20240501_030000.tar.zst"
    payload = _tar_bytes({"appdata/a.txt": b"hello" * 1000})
    path.write_bytes(zstandard.ZstdCompressor(write_checksum=True).compress(payload))
    assert TarZstdCodec(threads=1).test(str(path)) is True


def test_self_test_rejects_truncated_zstd_archive(tmp_path) -> None:
    path = tmp_path / "appdata_20240501_030000.tar.zst"
    payload = _tar_bytes({"appdata/a.txt": os.urandom(64 * 1024)})
    blob = zstandard.ZstdCompressor(write_checksum=True).compress(payload)
    path.write_bytes(blob[: len(blob) // 2])
    assert TarZstdCodec(threads=1).test(str(path)) is False


def test_self_test_handles_legacy_gzip(tmp_path) -> None:
    good = tmp_path / "appdata_20240101_030000.tar.gz"
    good.write_bytes(gzip.compress(_tar_bytes({"appdata/a.txt": b"x"})))
    bad = tmp_path / "appdata_20240102_030000.tar.gz"
    bad.write_bytes(gzip.compress(_tar_bytes({"appdata/a.txt": b"x" * 5000}))[:40])

    codec = TarZstdCodec(threads=1)
    assert codec.test(str(good)) is True
    assert codec.test(str(bad)) is False
    assert codec.test(str(tmp_path / "missing.tar.zst")) is False


def test_create_command_uses_listed_incremental_and_excludes() -> None:
    codec = TarZstdCodec(threads=1, excludes=("*/cache/*", "*.log"))
    cmd = codec._create_command("/mnt/user/appdata", "/backups/.snapshot")
    assert cmd[:4] == ["tar", "--create", "--file=-", "--listed-incremental=/backups/.snapshot"]
    assert "--exclude=*/cache/*" in cmd
    assert cmd[-3:] == ["-C", "/mnt/user", "appdata"]


def _digest_tree(root: str) -> dict:
    digests = {}
    for dirpath, _, filenames in os.walk(root):
        for filename in filenames:
            full = os.path.join(dirpath, filename)
            with open(full, "rb") as fh:
                digests[os.path.relpath(full, root)] = hashlib.sha256(fh.read()).hexdigest()
    return digests


@requires_gnu_tar
def test_full_and_incremental_round_trip_with_gnu_tar(tmp_path) -> None:
    source = tmp_path / "appdata"
    (source / "web").mkdir(parents=True)
    (source / "web" / "index.html").write_text("<h1>hi</h1>")
    (source / "web" / "remove-me.txt").write_text("temporary")
    (source / "db").mkdir()
    (source / "db" / "rows.bin").write_bytes(os.urandom(4096))

    codec = TarZstdCodec(threads=1)
    store = SnapshotStore(str(tmp_path / "configs"))
    builder = BackupChainBuilder(store, codec)
    t0 = datetime(2024, 5, 1, 3, 0, 0)
    asyncio.run(builder.create_backup(str(source), timestamp=t0))

    (source / "web" / "remove-me.txt").unlink()
    (source / "web" / "added.txt").write_text("new file")
    asyncio.run(builder.create_backup(str(source), timestamp=t0 + timedelta(days=1)))

    chain = RestoreChainResolver(store, codec).resolve()
    assert len(chain) == 2

    destination = tmp_path / "restored"
    restorer = RestoreScheduler(
        None,  # type: ignore[arg-type]
        None,  # type: ignore[arg-type]
        HealthVerifier(None),  # type: ignore[arg-type]
        codec,
        staging_dir=str(tmp_path / "staging"),
    )
    asyncio.run(restorer.apply_chain(chain, str(destination)))

    assert _digest_tree(str(destination)) == _digest_tree(str(source))


@requires_gnu_tar
def test_extract_of_garbage_raises_archive_corrupt(tmp_path) -> None:
    path = tmp_path / "appdata_20240501_030000.tar.zst"
    path.write_bytes(b"definitely not zstd")
    dest = tmp_path / "out"
    dest.mkdir()
    with pytest.raises(ArchiveCorrupt):
        asyncio.run(TarZstdCodec(threads=1).extract(str(path), str(dest)))


def test_chain_type_rejects_incremental_root(tmp_path) -> None:
    from stackvault.domain.enums import BackupKind
    from stackvault.domain.types import BackupSet

    inc = BackupSet(timestamp=datetime(2024, 5, 1), kind=BackupKind.INCREMENTAL, archive_path=str(tmp_path / "x"))
    with pytest.raises(ValueError):
        BackupChain(members=[inc], target=inc.timestamp)
