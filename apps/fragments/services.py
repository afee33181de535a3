from typing import Callable, Optional, Union

from apps.fragments.conversion import ConversionEngine
from apps.fragments.errors import FragmentError, NotFoundError
from apps.fragments.fragment import Fragment, new_fragment_id, utc_now
from apps.fragments.results import Err, Ok, Result
from apps.fragments.storage import FragmentStore


class FragmentService:
    """Create, read, convert and delete fragments for one storage backend.

    Every operation returns ``Ok(value)`` or ``Err(error)`` where ``error`` is
    one of the FragmentError subclasses; any other exception propagates.
    """

    def __init__(
        self,
        store: FragmentStore,
        engine: Optional[ConversionEngine] = None,
        *,
        clock: Callable[[], str] = utc_now,
        id_factory: Callable[[], str] = new_fragment_id,
    ):
        self.store = store
        self.engine = engine or ConversionEngine()
        self._clock = clock
        self._id_factory = id_factory

    async def create_fragment(self, owner_id: str, type: str, data: bytes) -> Result[Fragment]:
        try:
            fragment = Fragment(owner_id, type, store=self.store, clock=self._clock, id_factory=self._id_factory)
            try:
                await fragment.write_new(data)
            except FragmentError:
                # drop bytes written before a failed metadata write
                await self._discard(owner_id, fragment.id)
                raise
        except FragmentError as e:
            return Err(e)
        return Ok(fragment)

    async def get_fragment(self, owner_id: str, fragment_id: str) -> Result[Fragment]:
        try:
            return Ok(await Fragment.by_id(self.store, owner_id, fragment_id))
        except FragmentError as e:
            return Err(e)

    async def list_fragments(self, owner_id: str, expand: bool = False) -> Result[Union[list[str], list[Fragment]]]:
        try:
            return Ok(await Fragment.by_user(self.store, owner_id, expand))
        except FragmentError as e:
            return Err(e)

    async def delete_fragment(self, owner_id: str, fragment_id: str) -> Result[None]:
        try:
            await Fragment.delete(self.store, owner_id, fragment_id)
        except FragmentError as e:
            return Err(e)
        return Ok(None)

    async def read_fragment_bytes(self, owner_id: str, fragment_id: str) -> Result[bytes]:
        try:
            fragment = await Fragment.by_id(self.store, owner_id, fragment_id)
            return Ok(await fragment.get_data())
        except FragmentError as e:
            return Err(e)

    async def read_fragment_converted(
        self, owner_id: str, fragment_id: str, extension: str
    ) -> Result[tuple[bytes, str]]:
        """Return the fragment's bytes rendered for ``extension`` and the resulting MIME type."""
        try:
            fragment = await Fragment.by_id(self.store, owner_id, fragment_id)
            target = self.engine.resolve(extension, fragment.mime_type)
            data = await fragment.get_data()
            converted = self.engine.convert(data, fragment.mime_type, extension)
        except FragmentError as e:
            return Err(e)
        # an identity conversion keeps the stored type and its parameters
        if target == fragment.mime_type:
            return Ok((converted, fragment.type))
        return Ok((converted, target))

    async def _discard(self, owner_id: str, fragment_id: str) -> None:
        try:
            await self.store.delete(owner_id, fragment_id)
        except NotFoundError:
            pass
