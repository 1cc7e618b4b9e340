class KvtError(Exception):
    """Base exception for kvt."""


# Raised when an entry or store payload can't be decoded. The message always
# echoes the raw input that failed.
class FormatError(KvtError, ValueError):
    pass
