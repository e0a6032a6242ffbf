from __future__ import annotations

from enum import Enum
from dataclasses import dataclass, field
from typing import BinaryIO, ClassVar, Optional

from .exceptions import ScanError


class EntryType(Enum):
    REGULAR_FILE = "regular-file"
    DIRECTORY = "directory"
    SYMLINK = "symlink"
    OTHER = "other"


class PackageType(Enum):
    # Untyped package, resolved later by whoever opens the disk image
    GENERIC = "generic"


@dataclass(frozen=True)
class ScanRequest:
    path: str
    reader: BinaryIO


@dataclass
class ArchiveEntry:
    name: str
    entry_type: EntryType
    size: int

    @property
    def is_regular_file(self) -> bool:
        return self.entry_type is EntryType.REGULAR_FILE


@dataclass(frozen=True)
class InventoryRecord:
    DISK_IMAGE_KIND: ClassVar[str] = "disk-image"

    kind: str
    package_type: PackageType
    locations: tuple[str, ...]

    @staticmethod
    def disk_image(location: str) -> InventoryRecord:
        return InventoryRecord(InventoryRecord.DISK_IMAGE_KIND, PackageType.GENERIC, (location,))

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "package_type": self.package_type.value,
            "locations": list(self.locations),
        }


@dataclass
class ScanResult:
    """Records found in one archive, or the error that stopped the scan.

    A failed scan never carries records.
    """
    records: list[InventoryRecord] = field(default_factory=list)
    error: Optional[ScanError] = None

    @property
    def success(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "error": str(self.error) if self.error is not None else None,
            "records": [record.to_dict() for record in self.records],
        }


@dataclass(frozen=True)
class Capabilities:
    network: bool = False
    direct_fs: bool = False
