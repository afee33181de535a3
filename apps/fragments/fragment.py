"""Fragment entity: validated metadata plus access to the stored bytes."""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable, Optional, Union

from apps.fragments import registry
from apps.fragments.errors import NotFoundError, StorageError, ValidationError

if TYPE_CHECKING:
    from apps.fragments.storage import FragmentStore


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_fragment_id() -> str:
    return str(uuid.uuid4())


def _as_bytes(data) -> bytes:
    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise ValidationError('fragment data must be bytes')
    return bytes(data)


class Fragment:
    """A stored payload owned by one principal.

    Metadata is written with ``save()`` and bytes with ``set_data()``; both go
    through the injected FragmentStore. ``type`` cannot change once the
    fragment exists.
    """

    def __init__(
        self,
        owner_id: str,
        type: str,
        id: Optional[str] = None,
        created: Optional[str] = None,
        updated: Optional[str] = None,
        size: int = 0,
        *,
        store: FragmentStore,
        clock: Callable[[], str] = utc_now,
        id_factory: Callable[[], str] = new_fragment_id,
    ):
        if not owner_id or not isinstance(owner_id, str):
            raise ValidationError('owner id is required')
        if not type:
            raise ValidationError('type is required')
        if not registry.is_supported(type):
            raise ValidationError(f'unsupported type: {type}')
        # bool is an int subclass but never a byte count
        if isinstance(size, bool) or not isinstance(size, int) or size < 0:
            raise ValidationError('size must be a non-negative integer')

        self._store = store
        self._clock = clock
        self.id = id or id_factory()
        self.owner_id = owner_id
        self._type = type
        self.size = size
        now = clock()
        self.created = created or now
        self.updated = updated or now

    def __repr__(self) -> str:
        return f'Fragment(owner_id={self.owner_id!r}, id={self.id!r}, type={self._type!r}, size={self.size})'

    @property
    def type(self) -> str:
        return self._type

    @property
    def mime_type(self) -> str:
        """The fragment's type without parameters: ``text/html; charset=utf-8`` -> ``text/html``."""
        return registry.base_type(self._type)

    @property
    def is_text(self) -> bool:
        return registry.is_text(self.mime_type)

    @property
    def formats(self) -> Optional[tuple[str, ...]]:
        """Types this fragment can be served as, or None for an unregistered type."""
        return registry.conversion_targets(self.mime_type)

    def to_record(self) -> dict:
        return {
            'id': self.id,
            'ownerId': self.owner_id,
            'created': self.created,
            'updated': self.updated,
            'type': self._type,
            'size': self.size,
        }

    @classmethod
    def from_record(cls, record: dict, *, store: FragmentStore) -> Fragment:
        try:
            return cls(
                owner_id=record['ownerId'],
                type=record['type'],
                id=record['id'],
                created=record.get('created'),
                updated=record.get('updated'),
                size=record.get('size', 0),
                store=store,
            )
        except (KeyError, TypeError) as e:
            raise StorageError(f'malformed fragment metadata: {record!r}') from e

    @classmethod
    async def by_user(
        cls, store: FragmentStore, owner_id: str, expand: bool = False
    ) -> Union[list[str], list[Fragment]]:
        """List the owner's fragment ids, or full fragments when ``expand`` is set."""
        listed = await store.list_metadata(owner_id, expand=expand)
        if not expand:
            return list(listed)
        return [cls.from_record(record, store=store) for record in listed]

    @classmethod
    async def by_id(cls, store: FragmentStore, owner_id: str, fragment_id: str) -> Fragment:
        record = await store.read_metadata(owner_id, fragment_id)
        if record is None:
            raise NotFoundError(owner_id, fragment_id)
        return cls.from_record(record, store=store)

    @staticmethod
    async def delete(store: FragmentStore, owner_id: str, fragment_id: str) -> None:
        await store.delete(owner_id, fragment_id)

    async def save(self) -> None:
        self.updated = self._clock()
        await self._store.write_metadata(self.owner_id, self.to_record())

    async def get_data(self) -> bytes:
        data = await self._store.read_data(self.owner_id, self.id)
        if data is None:
            raise NotFoundError(self.owner_id, self.id, what='fragment data')
        return data

    async def set_data(self, data: bytes) -> None:
        """Record the new size, save the metadata, then write the bytes.

        The two writes are separate store calls: if the byte write fails the
        metadata already carries the new size and a StorageError is raised.
        """
        data = _as_bytes(data)
        self.size = len(data)
        await self.save()
        await self._store.write_data(self.owner_id, self.id, data)

    async def write_new(self, data: bytes) -> None:
        """Persist a fragment that is not stored yet: bytes first, metadata last.

        Readers only find a fragment through its metadata, so it never becomes
        visible before its bytes exist.
        """
        data = _as_bytes(data)
        self.size = len(data)
        await self._store.write_data(self.owner_id, self.id, data)
        await self.save()
