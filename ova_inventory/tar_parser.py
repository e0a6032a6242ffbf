from __future__ import annotations

import re
import struct
import logging

from dataclasses import dataclass
from typing import BinaryIO, ClassVar, Iterator, Optional

from .inventory import ArchiveEntry, EntryType
from .exceptions import ArchiveReadError, SourceReadError

BLOCK_SIZE = 512
ZERO_BLOCK = b"\x00" * BLOCK_SIZE

TYPE_FLAGS = {
    b"0": EntryType.REGULAR_FILE,
    b"\x00": EntryType.REGULAR_FILE,
    b"2": EntryType.SYMLINK,
    b"5": EntryType.DIRECTORY,
}

# Hard link, symlink, char device, block device, directory and FIFO never carry a body
HEADER_ONLY_TYPE_FLAGS = frozenset({b"1", b"2", b"3", b"4", b"5", b"6"})

GNU_LONG_NAME = b"L"
GNU_LONG_LINK = b"K"
GNU_SPARSE = b"S"
PAX_HEADER = b"x"
PAX_GLOBAL_HEADER = b"g"

GNU_SPARSE_NAME = "GNU.sparse.name"
GNU_SPARSE_SIZE = "GNU.sparse.size"
GNU_SPARSE_REAL_SIZE = "GNU.sparse.realsize"


def parse_string(data: bytes) -> str:
    return data.split(b"\x00", 1)[0].decode("utf-8", errors="surrogateescape")


def parse_numeric(data: bytes, field_name: str) -> int:
    # GNU base-256 encoding, used for sizes that do not fit in 11 octal digits
    if data and data[0] & 0x80:
        value = int.from_bytes(bytes([data[0] & 0x7f]) + data[1:], "big")
        if data[0] & 0x40:
            value -= 1 << (len(data) * 8 - 1)
        return value

    text = data.strip(b" \x00")
    if not text:
        return 0

    if not all(c in b"01234567" for c in text):
        raise ArchiveReadError(
            f"Failed to parse tar header with invalid {field_name} field {data!r}")

    return int(text, 8)


def parse_pax_records(data: bytes) -> dict:
    records = {}
    while data:
        length_text, separator, _ = data.partition(b" ")
        if not separator or not length_text.isdigit():
            raise ArchiveReadError("Failed to parse PAX header with invalid record length")

        length = int(length_text)
        if length <= len(length_text) + 1 or length > len(data):
            raise ArchiveReadError(
                f"Failed to parse PAX header with out of range record length {length}")

        record, data = data[:length], data[length:]
        if not record.endswith(b"\n"):
            raise ArchiveReadError("Failed to parse PAX header with unterminated record")

        key, equals, value = record[len(length_text) + 1:-1].partition(b"=")
        if not equals:
            raise ArchiveReadError("Failed to parse PAX header with record missing a key")

        records[key.decode("utf-8", errors="surrogateescape")] = value.decode("utf-8", errors="surrogateescape")

    return records


def parse_pax_number(records: dict, key: str) -> int:
    value = records[key]
    if not re.fullmatch(r"[0-9]+", value):
        raise ArchiveReadError(f"Failed to parse PAX header with invalid {key} \"{value}\"")

    return int(value)


@dataclass
class TarHeaderInfo:
    SIZE: ClassVar[int] = BLOCK_SIZE
    LAYOUT: ClassVar[str] = "100s8s8s8s12s12s8s1s100s6s2s32s32s8s8s155s12s"
    CHECKSUM_OFFSET: ClassVar[int] = 148
    CHECKSUM_SIZE: ClassVar[int] = 8
    USTAR_MAGIC: ClassVar[bytes] = b"ustar\x00"
    SPARSE_EXTENDED_OFFSET: ClassVar[int] = 482

    file_path: str
    file_size: int
    header_checksum: int
    type_flag: bytes
    link_path: str
    magic: bytes
    prefix: str
    is_extended: bool

    @staticmethod
    def from_bytes(data: bytes) -> TarHeaderInfo:
        header = struct.unpack(TarHeaderInfo.LAYOUT, data)

        return TarHeaderInfo(parse_string(header[0]),  # file_path
                             parse_numeric(header[4], "size"),  # file_size
                             parse_numeric(header[6], "checksum"),  # header_checksum
                             header[7],  # type_flag
                             parse_string(header[8]),  # link_path
                             header[9],  # magic
                             parse_string(header[15]),  # prefix
                             data[TarHeaderInfo.SPARSE_EXTENDED_OFFSET] != 0,  # is_extended
                             )

    @property
    def name(self) -> str:
        if self.magic == self.USTAR_MAGIC and self.prefix:
            return f"{self.prefix}/{self.file_path}"
        return self.file_path

    def verify_header_checksum(self, data: bytes) -> None:
        start, end = self.CHECKSUM_OFFSET, self.CHECKSUM_OFFSET + self.CHECKSUM_SIZE
        unsigned = sum(data[:start]) + ord(" ") * self.CHECKSUM_SIZE + sum(data[end:])
        # Some historic writers summed the header as signed chars
        signed = sum(struct.unpack(f"{start}b", data[:start])) + ord(" ") * self.CHECKSUM_SIZE + \
            sum(struct.unpack(f"{self.SIZE - end}b", data[end:]))

        if self.header_checksum not in (unsigned, signed):
            raise ArchiveReadError(
                f"Failed to parse tar header with invalid checksum (expected {self.header_checksum:o}, got {unsigned:o})")


class TarParser:
    READ_GRANULARITY: ClassVar[int] = 0x10000
    # Long names and PAX records are buffered in memory, so cap their size
    MAX_EXTENSION_SIZE: ClassVar[int] = 1 << 20
    SPARSE_EXTENSION_FLAG_OFFSET: ClassVar[int] = 504

    def __init__(self, stream: BinaryIO):
        self.stream = stream
        self.offset = 0
        self.seekable = getattr(stream, "seekable", lambda: False)()

    def entries(self) -> Iterator[ArchiveEntry]:
        long_name = None
        pax_records = {}

        while True:
            header = self.read_header()
            if header is None:
                return

            if header.type_flag in (GNU_LONG_NAME, GNU_LONG_LINK):
                data = self.read_extension_body(header)
                if header.type_flag == GNU_LONG_NAME:
                    long_name = parse_string(data)
                logging.debug(f"Consumed GNU long {'name' if header.type_flag == GNU_LONG_NAME else 'link'} record")
                continue

            if header.type_flag == PAX_HEADER:
                pax_records.update(parse_pax_records(self.read_extension_body(header)))
                logging.debug(f"Consumed PAX header with keys {sorted(pax_records)}")
                continue

            if header.type_flag == PAX_GLOBAL_HEADER:
                self.skip(header.file_size)
                logging.debug("Skipped PAX global header")
                continue

            name = header.name
            if long_name is not None:
                name = long_name
            if "path" in pax_records:
                name = pax_records["path"]
            # GNU tar stores PAX sparse files under ./GNUSparseFile.<pid>/ and keeps the real name here
            if GNU_SPARSE_NAME in pax_records:
                name = pax_records[GNU_SPARSE_NAME]

            size = header.file_size
            if "size" in pax_records:
                size = parse_pax_number(pax_records, "size")

            # Body size stays as stored, the sparse keys give the expanded file size
            entry_size = size
            for key in (GNU_SPARSE_SIZE, GNU_SPARSE_REAL_SIZE):
                if key in pax_records:
                    entry_size = parse_pax_number(pax_records, key)
                    break

            long_name = None
            pax_records = {}

            if header.type_flag == GNU_SPARSE and header.is_extended:
                self.skip_sparse_extensions()

            entry_type = TYPE_FLAGS.get(header.type_flag, EntryType.OTHER)
            if header.type_flag == b"\x00" and name.endswith("/"):
                entry_type = EntryType.DIRECTORY

            yield ArchiveEntry(name, entry_type, entry_size)

            self.skip(0 if header.type_flag in HEADER_ONLY_TYPE_FLAGS else size)

    def read_header(self) -> Optional[TarHeaderInfo]:
        block = self.read_block()
        if block is None:
            return None

        # End of archive is marked by two zero blocks, a lone one at EOF is tolerated
        if block == ZERO_BLOCK:
            block = self.read_block()
            if block is None or block == ZERO_BLOCK:
                return None
            raise ArchiveReadError(
                f"Found non-zero block after end of archive marker at offset 0x{self.offset - BLOCK_SIZE:x}")

        header = TarHeaderInfo.from_bytes(block)
        header.verify_header_checksum(block)

        if header.file_size < 0:
            raise ArchiveReadError(
                f"Failed to parse tar header for \"{header.name}\" with negative size {header.file_size}")

        return header

    def read_block(self) -> Optional[bytes]:
        block = self.read(BLOCK_SIZE)
        if not block:
            return None

        if len(block) < BLOCK_SIZE:
            raise ArchiveReadError(
                f"Truncated tar header at offset 0x{self.offset - len(block):x} ({len(block)} of {BLOCK_SIZE} bytes)")

        return block

    def read_extension_body(self, header: TarHeaderInfo) -> bytes:
        if header.file_size > self.MAX_EXTENSION_SIZE:
            raise ArchiveReadError(
                f"Extension header of {header.file_size} bytes exceeds limit of {self.MAX_EXTENSION_SIZE} bytes")

        data = self.read(header.file_size)
        if len(data) < header.file_size:
            raise ArchiveReadError(
                f"Truncated extension header ({len(data)} of {header.file_size} bytes)")

        self.skip_padding(header.file_size)
        return data

    def skip_sparse_extensions(self) -> None:
        is_extended = True
        while is_extended:
            block = self.read_block()
            if block is None:
                raise ArchiveReadError("Truncated GNU sparse header extension")
            is_extended = block[self.SPARSE_EXTENSION_FLAG_OFFSET] != 0

    def skip(self, size: int) -> None:
        padded_size = size + (-size % BLOCK_SIZE)
        if padded_size == 0:
            return

        if self.seekable:
            # Seek to the last byte of the body and read it to detect truncation
            try:
                self.stream.seek(padded_size - 1, 1)
            except OSError as e:
                raise SourceReadError(f"Failed to seek archive stream: {e}")
            self.offset += padded_size - 1
            skipped = len(self.read(1))
            missing = 1 - skipped
        else:
            missing = padded_size
            while missing > 0:
                chunk = self.read(min(missing, self.READ_GRANULARITY))
                if not chunk:
                    break
                missing -= len(chunk)

        if missing > 0:
            raise ArchiveReadError(
                f"Truncated tar entry body of {size} bytes before offset 0x{self.offset:x}")

    def skip_padding(self, size: int) -> None:
        padding = -size % BLOCK_SIZE
        if padding and len(self.read(padding)) < padding:
            raise ArchiveReadError("Truncated tar entry padding")

    def read(self, size: int) -> bytes:
        chunks = []
        remaining = size
        while remaining > 0:
            try:
                chunk = self.stream.read(min(remaining, self.READ_GRANULARITY))
            except OSError as e:
                raise SourceReadError(f"Failed to read archive stream: {e}")

            if not chunk:
                break

            chunks.append(chunk)
            remaining -= len(chunk)

        data = b"".join(chunks)
        self.offset += len(data)
        return data
