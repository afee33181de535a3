"""Error taxonomy for the fragments core."""


class FragmentError(Exception):
    """Base class for every failure raised by the fragments core."""

    code = 500


class ValidationError(FragmentError):
    """Malformed construction input (owner, type, size or payload)."""

    code = 400


class NotFoundError(FragmentError):
    code = 404

    def __init__(self, owner_id: str, fragment_id: str, what: str = 'fragment'):
        self.owner_id = owner_id
        self.fragment_id = fragment_id
        self.what = what
        super().__init__(f'{what} not found: {fragment_id}')


class StorageError(FragmentError):
    """The storage backend failed; the caller may retry."""

    code = 503


class UnsupportedConversion(FragmentError):
    code = 415

    def __init__(self, source_type: str, target: str, reason: str = 'not allowed'):
        self.source_type = source_type
        self.target = target
        self.reason = reason
        super().__init__(f'cannot convert {source_type} to {target}: {reason}')


class ConversionError(FragmentError):
    """The payload is malformed for its declared type."""

    code = 500
