"""Tree archive codec: GNU tar listed-incremental mode plus zstd compression.

`tar --listed-incremental=<marker>` produces the archive stream and both reads
and advances the snapshot marker; the stream is compressed in-process with a
multi-threaded zstd compressor. Legacy `.tar.gz` sets can still be tested and
extracted.
"""

from __future__ import annotations

import asyncio
import gzip
import logging
import os
import tarfile
from abc import ABC, abstractmethod
from typing import BinaryIO, Iterable, Optional, Sequence

import zstandard

from stackvault.domain.errors import ArchiveCorrupt, BackupFailed

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


def compression_threads(cpu_fraction: float = 0.75, cpu_count: Optional[int] = None) -> int:
    """Worker threads for the compressor: a fraction of the CPUs, at least one."""
    cpus = cpu_count if cpu_count is not None else (os.cpu_count() or 4)
    return max(1, int(cpus * cpu_fraction))


class ArchiveCodec(ABC):
    """Produces, extracts and self-tests tree archives."""

    extension: str = "tar"

    @abstractmethod
    async def create(self, source_root: str, archive_path: str, marker_path: str) -> None:
        """Archive `source_root`, reading and advancing the marker at `marker_path`."""

    @abstractmethod
    async def extract(self, archive_path: str, dest_dir: str) -> None:
        """Replay one archive into `dest_dir`, honouring incremental deletions."""

    @abstractmethod
    def test(self, archive_path: str) -> bool:
        """Integrity self-test: True when the archive decodes completely."""


class TarZstdCodec(ArchiveCodec):
    extension = "tar.zst"

    def __init__(
        self,
        *,
        level: int = 3,
        cpu_fraction: float = 0.75,
        threads: Optional[int] = None,
        excludes: Sequence[str] = (),
        tar_bin: str = "tar",
    ) -> None:
        self.level = level
        self.threads = threads if threads is not None else compression_threads(cpu_fraction)
        self.excludes = tuple(excludes)
        self.tar_bin = tar_bin

    def _create_command(self, source_root: str, marker_path: str) -> list[str]:
        source_root = os.path.abspath(source_root)
        cmd = [
            self.tar_bin,
            "--create",
            "--file=-",
            f"--listed-incremental={marker_path}",
        ]
        cmd.extend(f"--exclude={pattern}" for pattern in self.excludes)
        cmd.extend(["-C", os.path.dirname(source_root), os.path.basename(source_root)])
        return cmd

    async def create(self, source_root: str, archive_path: str, marker_path: str) -> None:
        cmd = self._create_command(source_root, marker_path)
        logger.info(
            "archive_create_start | source=%s archive=%s threads=%s level=%s",
            source_root,
            archive_path,
            self.threads,
            self.level,
        )
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise BackupFailed(f"cannot run {self.tar_bin}: {exc}") from exc

        assert proc.stdout is not None and proc.stderr is not None
        stderr_task = asyncio.ensure_future(proc.stderr.read())
        cctx = zstandard.ZstdCompressor(level=self.level, threads=self.threads, write_checksum=True)
        try:
            with open(archive_path, "wb") as fh, cctx.stream_writer(fh) as writer:
                while True:
                    chunk = await proc.stdout.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    writer.write(chunk)
        except (OSError, zstandard.ZstdError) as exc:
            proc.kill()
            await proc.wait()
            stderr_task.cancel()
            raise BackupFailed(f"writing {archive_path} failed: {exc}") from exc

        returncode = await proc.wait()
        stderr_text = (await stderr_task).decode("utf-8", errors="replace").strip()
        # GNU tar exits 1 when files changed while being read; the archive is still usable
        if returncode == 1:
            logger.warning("archive_create_files_changed | archive=%s stderr=%s", archive_path, stderr_text[-500:])
        elif returncode != 0:
            raise BackupFailed(f"tar exited with {returncode}: {stderr_text[-500:]}")

    def _open_decompressed(self, fh: BinaryIO) -> BinaryIO:
        if _is_gzip_name(getattr(fh, "name", "")):
            return gzip.GzipFile(fileobj=fh, mode="rb")  # type: ignore[return-value]
        return zstandard.ZstdDecompressor().stream_reader(fh)  # type: ignore[return-value]

    async def extract(self, archive_path: str, dest_dir: str) -> None:
        cmd = [
            self.tar_bin,
            "--extract",
            "--file=-",
            "--listed-incremental=/dev/null",
            "-C",
            dest_dir,
        ]
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise ArchiveCorrupt(f"cannot run {self.tar_bin}: {exc}") from exc

        assert proc.stdin is not None and proc.stderr is not None
        stderr_task = asyncio.ensure_future(proc.stderr.read())
        feed_error: Optional[BaseException] = None
        try:
            with open(archive_path, "rb") as fh, self._open_decompressed(fh) as reader:
                for chunk in iter(lambda: reader.read(CHUNK_SIZE), b""):
                    proc.stdin.write(chunk)
                    await proc.stdin.drain()
        except (OSError, EOFError, zstandard.ZstdError) as exc:
            feed_error = exc
        finally:
            try:
                proc.stdin.close()
            except OSError:
                pass

        returncode = await proc.wait()
        stderr_text = (await stderr_task).decode("utf-8", errors="replace").strip()
        if feed_error is not None:
            raise ArchiveCorrupt(f"{os.path.basename(archive_path)}: {feed_error}") from feed_error
        if returncode != 0:
            raise ArchiveCorrupt(
                f"{os.path.basename(archive_path)}: tar exited with {returncode}: {stderr_text[-500:]}"
            )

    def test(self, archive_path: str) -> bool:
        if not os.path.isfile(archive_path):
            return False
        try:
            if not _is_gzip_name(archive_path) and not _zstd_frame_complete(archive_path):
                return False
            with open(archive_path, "rb") as fh, self._open_decompressed(fh) as reader:
                with tarfile.open(fileobj=reader, mode="r|") as tar:
                    for _ in tar:
                        pass
        except (OSError, EOFError, tarfile.TarError, zstandard.ZstdError) as exc:
            logger.warning("archive_test_failed | archive=%s error=%s", archive_path, exc)
            return False
        return True


def _is_gzip_name(path: str) -> bool:
    return str(path).endswith((".gz", ".tgz"))


def _zstd_frame_complete(archive_path: str) -> bool:
    """Decompress the whole frame; checksum mismatches raise ZstdError."""
    dobj = zstandard.ZstdDecompressor().decompressobj()
    with open(archive_path, "rb") as fh:
        for chunk in _iter_chunks(fh):
            dobj.decompress(chunk)
    return bool(dobj.eof)


def _iter_chunks(fh: BinaryIO) -> Iterable[bytes]:
    return iter(lambda: fh.read(CHUNK_SIZE), b"")
