"""
Pack and unpack operations for transfer archives.

Archives are flat zip files: every member is a regular file at the top
level. Unpacking streams one entry at a time, so memory stays bounded by
the copy buffer regardless of archive size.
"""

import logging
import shutil
import zipfile
import zlib
from pathlib import Path, PurePosixPath
from typing import List

from ..core.exceptions import ArchiveReadError, ArchiveWriteError

logger = logging.getLogger(__name__)

COPY_BUFFER_SIZE = 1024 * 1024


class ArchiveCodec:
    """
    Packs a directory of collection files into a zip archive and back.

    Stateless; one instance can serve any number of runs.
    """

    def __init__(self, compresslevel: int = 9):
        """
        Initialize the codec.

        Args:
            compresslevel: Deflate level for pack (9 = maximum)
        """
        self.compresslevel = compresslevel

    def pack(self, source_dir: Path, output_path: Path) -> Path:
        """
        Pack the regular files directly under source_dir into a zip archive.

        Args:
            source_dir: Directory holding the files to pack (not recursed)
            output_path: Path for the output archive

        Returns:
            Path to the created archive

        Raises:
            ArchiveWriteError if the archive cannot be created or a file cannot be read
        """
        source_dir = Path(source_dir)
        output_path = Path(output_path)

        logger.info(f"Packing {source_dir} to {output_path}")

        try:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            with zipfile.ZipFile(
                output_path,
                "w",
                compression=zipfile.ZIP_DEFLATED,
                compresslevel=self.compresslevel,
            ) as zf:
                for file_path in sorted(source_dir.iterdir()):
                    if not file_path.is_file():
                        continue
                    zf.write(file_path, file_path.name)
                    logger.debug(f"  Added: {file_path.name}")
        except (OSError, zipfile.BadZipFile, zlib.error) as e:
            raise ArchiveWriteError(f"Failed to write archive: {e}", path=str(output_path)) from e

        logger.info(f"Created archive: {output_path} ({output_path.stat().st_size} bytes)")
        return output_path

    def unpack(self, archive_path: Path, output_dir: Path) -> List[str]:
        """
        Extract the archive's file entries into output_dir.

        Directory entries are skipped. Entries are visited strictly in
        archive order and copied through a bounded buffer.

        Args:
            archive_path: Path to the zip archive
            output_dir: Directory to extract to

        Returns:
            Extracted file names, in archive order

        Raises:
            ArchiveReadError on a corrupt or truncated archive, or an unsafe entry name
        """
        archive_path = Path(archive_path)
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        logger.info(f"Unpacking {archive_path} to {output_dir}")

        extracted: List[str] = []
        try:
            with zipfile.ZipFile(archive_path, "r") as zf:
                for info in zf.infolist():
                    if info.is_dir():
                        continue
                    target = output_dir / _safe_entry_name(info.filename)
                    target.parent.mkdir(parents=True, exist_ok=True)
                    with zf.open(info, "r") as src, open(target, "wb") as dst:
                        shutil.copyfileobj(src, dst, COPY_BUFFER_SIZE)
                    extracted.append(info.filename)
        except ArchiveReadError:
            raise
        except (zipfile.BadZipFile, zipfile.LargeZipFile, zlib.error, EOFError) as e:
            raise ArchiveReadError(f"Corrupt archive: {e}", path=str(archive_path)) from e
        except OSError as e:
            raise ArchiveReadError(f"Failed to read archive: {e}", path=str(archive_path)) from e

        logger.info(f"Extracted {len(extracted)} files")
        return extracted


def _safe_entry_name(name: str) -> PurePosixPath:
    """Reject entry names that would land outside the extraction directory."""
    path = PurePosixPath(name.replace("\\", "/"))
    if path.is_absolute() or ".." in path.parts or not path.parts:
        raise ArchiveReadError(f"Unsafe archive entry name: {name}", path=name)
    return path
