import io
import tarfile

import pytest

DISK_CONTENT = b"Dummy disk image content"

END_OF_ARCHIVE = b"\x00" * 1024


@pytest.fixture
def build_tar():
    """Build an in-memory tar archive.

    Members are (name, content) pairs: bytes content makes a regular file,
    None makes a directory.
    """
    def build(*members, tar_format=tarfile.PAX_FORMAT) -> bytes:
        buffer = io.BytesIO()
        with tarfile.open(fileobj=buffer, mode="w", format=tar_format) as archive:
            for name, content in members:
                info = tarfile.TarInfo(name)
                info.mode = 0o644
                if content is None:
                    info.type = tarfile.DIRTYPE
                    info.mode = 0o755
                    archive.addfile(info)
                else:
                    info.size = len(content)
                    archive.addfile(info, io.BytesIO(content))

        return buffer.getvalue()

    return build


@pytest.fixture
def raw_header():
    """Build a single 512-byte ustar header block with a valid checksum."""
    def build(name, size=0, type_flag=b"0", size_field=None, magic=b"ustar\x0000", prefix="",
              sparse_extended=False, signed_checksum=False) -> bytes:
        block = bytearray(512)
        encoded_name = name.encode("utf-8") if isinstance(name, str) else name
        block[0:len(encoded_name)] = encoded_name
        block[100:108] = b"0000644\x00"
        block[124:136] = size_field if size_field is not None else b"%011o\x00" % size
        block[136:148] = b"00000000000\x00"
        block[156:157] = type_flag
        block[257:265] = magic
        block[345:345 + len(prefix)] = prefix.encode("utf-8")
        if sparse_extended:
            block[482] = 1

        block[148:156] = b" " * 8
        if signed_checksum:
            checksum = sum(b - 256 if b > 127 else b for b in block)
        else:
            checksum = sum(block)
        block[148:156] = b"%06o\x00 " % checksum

        return bytes(block)

    return build


@pytest.fixture
def pad():
    def build(content: bytes) -> bytes:
        return content + b"\x00" * (-len(content) % 512)

    return build


@pytest.fixture
def pax_record():
    def build(key: str, value: str) -> bytes:
        body = f" {key}={value}\n".encode("utf-8")
        length = len(body)
        while len(str(length)) + len(body) != length:
            length = len(str(length)) + len(body)

        return str(length).encode("ascii") + body

    return build


class SequentialReader:
    """A read-only stream that cannot seek, like a pipe."""

    def __init__(self, data: bytes):
        self.buffer = io.BytesIO(data)

    def read(self, size=-1) -> bytes:
        return self.buffer.read(size)

    def seekable(self) -> bool:
        return False


class FailingReader:
    def __init__(self, data: bytes = b"", fail_after: int = 0):
        self.buffer = io.BytesIO(data)
        self.fail_after = fail_after

    def read(self, size=-1) -> bytes:
        if self.buffer.tell() >= self.fail_after:
            raise OSError("Input/output error")
        if size is None or size < 0:
            size = self.fail_after - self.buffer.tell()
        return self.buffer.read(min(size, self.fail_after - self.buffer.tell()))

    def seekable(self) -> bool:
        return False


@pytest.fixture
def sequential_reader():
    return SequentialReader


@pytest.fixture
def failing_reader():
    return FailingReader
