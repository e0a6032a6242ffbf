from __future__ import annotations

import logging

from abc import ABC, abstractmethod

from .inventory import Capabilities, InventoryRecord, ScanRequest, ScanResult
from .exceptions import ScanError


class Extractor(ABC):

    @abstractmethod
    def get_name(self) -> str:
        pass

    @abstractmethod
    def get_version(self) -> int:
        pass

    @abstractmethod
    def get_requirements(self) -> Capabilities:
        pass

    @abstractmethod
    def check_file_required(self, path: str) -> bool:
        pass

    @abstractmethod
    def extract(self, request: ScanRequest, cancel_event=None) -> list[InventoryRecord]:
        pass

    def scan(self, request: ScanRequest, cancel_event=None) -> ScanResult:
        """Like extract(), but reports scan failures in the result instead of raising."""
        try:
            records = self.extract(request, cancel_event)
        except ScanError as e:
            logging.warning(
                f"{self.get_name()} failed to scan \"{request.path}\": {e}")
            return ScanResult(error=e)

        return ScanResult(records=records)
