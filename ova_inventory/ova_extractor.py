from __future__ import annotations

import os
import logging
import posixpath

from io import BytesIO
from typing import BinaryIO, ClassVar, Optional

from .extractor import Extractor
from .tar_parser import TarParser
from .inventory import ArchiveEntry, Capabilities, InventoryRecord, ScanRequest
from .exceptions import ScanCancelledError, SourceReadError

OVA_EXTENSION = ".ova"

DISK_IMAGE_EXTENSIONS = frozenset({
    ".vdi",
    ".vmdk",
    ".vhd",
    ".vhdx",
    ".qcow",
    ".qcow2",
    ".qcow3",
})

TAR_MAGIC = b"ustar"
TAR_MAGIC_OFFSET = 257


def file_extension(path: str) -> str:
    _, dot, extension = os.path.basename(path).rpartition(".")
    return f".{extension.lower()}" if dot else ""


def is_eligible(path: str) -> bool:
    return file_extension(path) == OVA_EXTENSION


def looks_like_tar(buffer: bytes) -> bool:
    if len(buffer) < TAR_MAGIC_OFFSET + len(TAR_MAGIC):
        return False

    return buffer[TAR_MAGIC_OFFSET:TAR_MAGIC_OFFSET + len(TAR_MAGIC)] == TAR_MAGIC


def clean_entry_name(name: str) -> str:
    # Anchor at the archive root so ".." can never climb out of the container
    return posixpath.normpath("/" + name).lstrip("/")


def compose_location(archive_path: str, entry_name: str) -> str:
    return os.path.normpath(os.path.join(archive_path, entry_name))


def check_cancelled(cancel_event, path: str) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise ScanCancelledError(f"Scan of \"{path}\" was cancelled")


class OvaExtractor(Extractor):
    """Finds the disk images packed inside an OVA (tar) virtual appliance.

    Each disk image becomes a placeholder record pointing at
    "<archive path>/<entry name>", for a later extractor to open.
    """
    NAME: ClassVar[str] = "embeddedfs/ova"
    VERSION: ClassVar[int] = 0
    SNIFF_SIZE: ClassVar[int] = 512

    def __init__(self, buffer_whole_file: bool = True):
        self.buffer_whole_file = buffer_whole_file

    def get_name(self) -> str:
        return self.NAME

    def get_version(self) -> int:
        return self.VERSION

    def get_requirements(self) -> Capabilities:
        return Capabilities()

    def check_file_required(self, path: str) -> bool:
        return is_eligible(path)

    def extract(self, request: ScanRequest, cancel_event=None) -> list[InventoryRecord]:
        if not is_eligible(request.path):
            return []

        stream = self.open_archive(request)
        if stream is None:
            logging.debug(f"Skipping \"{request.path}\" which is not a tar archive")
            return []

        check_cancelled(cancel_event, request.path)

        records = []
        for entry in TarParser(stream).entries():
            check_cancelled(cancel_event, request.path)

            record = self.classify(request.path, entry)
            if record is not None:
                records.append(record)

        logging.info(f"Found {len(records)} disk image(s) in \"{request.path}\"")
        return records

    def open_archive(self, request: ScanRequest) -> Optional[BinaryIO]:
        reader = request.reader

        if not self.buffer_whole_file and getattr(reader, "seekable", lambda: False)():
            try:
                start = reader.tell()
                head = reader.read(self.SNIFF_SIZE)
                reader.seek(start)
            except OSError as e:
                raise SourceReadError(f"Failed to read \"{request.path}\": {e}")

            return reader if looks_like_tar(head) else None

        try:
            content = reader.read()
        except OSError as e:
            raise SourceReadError(f"Failed to read \"{request.path}\": {e}")

        if not looks_like_tar(content[:self.SNIFF_SIZE]):
            return None

        return BytesIO(content)

    def classify(self, archive_path: str, entry: ArchiveEntry) -> Optional[InventoryRecord]:
        if not entry.is_regular_file:
            logging.debug(f"Skipping non-file tar entry \"{entry.name}\"")
            return None

        name = clean_entry_name(entry.name)
        if file_extension(name) not in DISK_IMAGE_EXTENSIONS:
            logging.debug(f"Skipping unwanted tar entry \"{entry.name}\"")
            return None

        return InventoryRecord.disk_image(compose_location(archive_path, name))


def new() -> Extractor:
    return OvaExtractor()


def new_default() -> Extractor:
    return new()
