
class ScanError(Exception):
    def __init__(self, message):
        super(ScanError, self).__init__(message)


class SourceReadError(ScanError):
    def __init__(self, message):
        super(SourceReadError, self).__init__(message)


class ArchiveReadError(ScanError):
    def __init__(self, message):
        super(ArchiveReadError, self).__init__(message)


class ScanCancelledError(ScanError):
    def __init__(self, message):
        super(ScanCancelledError, self).__init__(message)
