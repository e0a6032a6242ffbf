from .ova_extractor import OvaExtractor, new, new_default
from .inventory import ScanRequest, ScanResult, InventoryRecord, PackageType
from .exceptions import ScanError, SourceReadError, ArchiveReadError, ScanCancelledError
