import asyncio

import pytest

import apps.fragments.storage as storage
from apps.fragments.errors import NotFoundError, StorageError, ValidationError
from apps.fragments.storage import (
    DBStorage,
    FragmentStore,
    InMemoryFragmentStore,
    LocalStorage,
    S3HTTPStorage,
    TortoiseFragmentStore,
)
from config.db import close_db, init_db


def record(fragment_id='fragment456', owner_id='user123', size=11):
    return {
        'id': fragment_id,
        'ownerId': owner_id,
        'created': '2024-01-01T00:00:00+00:00',
        'updated': '2024-01-01T00:00:00+00:00',
        'type': 'text/plain',
        'size': size,
    }


async def exercise_store(store):
    """Behaviour every FragmentStore backend shares."""
    assert await store.write_metadata('user123', record()) is None
    assert await store.read_metadata('user123', 'fragment456') == record()
    assert await store.read_metadata('user123', 'missing') is None
    assert await store.read_metadata('someone-else', 'fragment456') is None

    await store.write_data('user123', 'fragment456', b'Sample data')
    assert await store.read_data('user123', 'fragment456') == b'Sample data'
    assert await store.read_data('someone-else', 'fragment456') is None

    # overwrite is read back
    await store.write_metadata('user123', record(size=3))
    await store.write_data('user123', 'fragment456', b'new')
    assert (await store.read_metadata('user123', 'fragment456'))['size'] == 3
    assert await store.read_data('user123', 'fragment456') == b'new'

    await store.write_metadata('user123', record('second'))
    assert sorted(await store.list_metadata('user123')) == ['fragment456', 'second']
    expanded = await store.list_metadata('user123', expand=True)
    assert sorted(r['id'] for r in expanded) == ['fragment456', 'second']
    assert await store.list_metadata('someone-else') == []

    await store.delete('user123', 'fragment456')
    assert await store.read_metadata('user123', 'fragment456') is None
    assert await store.read_data('user123', 'fragment456') is None

    # metadata only: still deletable
    await store.delete('user123', 'second')
    with pytest.raises(NotFoundError):
        await store.delete('user123', 'second')

    # data only: still deletable
    await store.write_data('user123', 'blob-only', b'x')
    await store.delete('user123', 'blob-only')
    assert await store.read_data('user123', 'blob-only') is None


def test_in_memory_store():
    asyncio.run(exercise_store(InMemoryFragmentStore()))


def test_in_memory_store_satisfies_protocol():
    assert isinstance(InMemoryFragmentStore(), FragmentStore)
    assert isinstance(TortoiseFragmentStore(DBStorage()), FragmentStore)


def test_in_memory_store_copies_records():
    store = InMemoryFragmentStore()
    original = record()
    asyncio.run(store.write_metadata('user123', original))
    original['size'] = 999
    assert asyncio.run(store.read_metadata('user123', 'fragment456'))['size'] == 11


def test_write_metadata_rejects_foreign_owner():
    store = InMemoryFragmentStore()
    with pytest.raises(ValidationError):
        asyncio.run(store.write_metadata('user123', record(owner_id='intruder')))
    with pytest.raises(ValidationError):
        asyncio.run(store.write_metadata('user123', {'ownerId': 'user123'}))


def test_local_storage_put_get_delete(tmp_path):
    blobs = LocalStorage(str(tmp_path))
    asyncio.run(blobs.put('owner/file1', b'hello world'))
    assert asyncio.run(blobs.get('owner/file1')) == b'hello world'
    assert (tmp_path / 'owner' / 'file1').read_bytes() == b'hello world'
    assert asyncio.run(blobs.delete('owner/file1')) is True
    assert asyncio.run(blobs.delete('owner/file1')) is False
    assert asyncio.run(blobs.get('owner/file1')) is None


@pytest.mark.parametrize('blob_id', ['../escape', 'owner/../../escape', '.'])
def test_local_storage_rejects_paths_outside_base(tmp_path, blob_id):
    blobs = LocalStorage(str(tmp_path / 'base'))
    with pytest.raises(ValidationError):
        asyncio.run(blobs.put(blob_id, b'x'))


def run_with_db(make_coro):
    async def main():
        await init_db('sqlite://:memory:')
        try:
            return await make_coro()
        finally:
            await close_db()

    return asyncio.run(main())


def test_tortoise_store_with_local_blobs(tmp_path):
    run_with_db(lambda: exercise_store(TortoiseFragmentStore(LocalStorage(str(tmp_path)))))


def test_tortoise_store_with_db_blobs():
    run_with_db(lambda: exercise_store(TortoiseFragmentStore(DBStorage())))


def test_tortoise_store_lists_in_insertion_order():
    async def scenario():
        store = TortoiseFragmentStore(DBStorage())
        for fragment_id in ('c', 'a', 'b'):
            await store.write_metadata('user123', record(fragment_id))
        return await store.list_metadata('user123')

    assert run_with_db(scenario) == ['c', 'a', 'b']


def test_tortoise_store_wraps_backend_failures(tmp_path):
    class BrokenBlobs:
        async def put(self, blob_id, data):
            raise OSError('read-only file system')

    store = TortoiseFragmentStore(BrokenBlobs())
    with pytest.raises(StorageError) as exc_info:
        asyncio.run(store.write_data('user123', 'fragment456', b'x'))
    assert isinstance(exc_info.value.__cause__, OSError)


class DummyResponse:
    def __init__(self, status_code=200, content=b'', text=''):
        self.status_code = status_code
        self.content = content
        self.text = text


class DummyClient:
    # Shared store across instances so separate context managers see the same data
    _shared_store = {}
    requests = []

    def __init__(self, *args, **kwargs):
        pass

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def put(self, url, content=None, headers=None):
        DummyClient.requests.append(('PUT', url, headers))
        DummyClient._shared_store[url] = content
        return DummyResponse(status_code=200, content=b'', text='OK')

    async def get(self, url, headers=None):
        DummyClient.requests.append(('GET', url, headers))
        if url not in DummyClient._shared_store:
            return DummyResponse(status_code=404, content=b'', text='Not Found')
        return DummyResponse(status_code=200, content=DummyClient._shared_store[url], text='OK')

    async def head(self, url, headers=None):
        DummyClient.requests.append(('HEAD', url, headers))
        return DummyResponse(status_code=200 if url in DummyClient._shared_store else 404)

    async def delete(self, url, headers=None):
        DummyClient.requests.append(('DELETE', url, headers))
        DummyClient._shared_store.pop(url, None)
        return DummyResponse(status_code=204)


@pytest.fixture
def dummy_s3(monkeypatch):
    DummyClient._shared_store = {}
    DummyClient.requests = []
    monkeypatch.setattr('apps.fragments.storage.httpx.AsyncClient', DummyClient)
    return DummyClient


def test_s3_http_storage_put_get_delete(dummy_s3):
    s3 = S3HTTPStorage(endpoint='https://example.com', bucket='b', access_key='a', secret_key='s')
    asyncio.run(s3.put('owner/obj1', b'hello-s3'))
    assert asyncio.run(s3.get('owner/obj1')) == b'hello-s3'
    assert 'https://example.com/b/owner/obj1' in dummy_s3._shared_store

    method, _, headers = dummy_s3.requests[0]
    assert method == 'PUT'
    assert headers['Authorization'].startswith('AWS4-HMAC-SHA256 Credential=a/')
    assert '/us-east-1/s3/aws4_request' in headers['Authorization']

    assert asyncio.run(s3.delete('owner/obj1')) is True
    assert asyncio.run(s3.delete('owner/obj1')) is False
    assert asyncio.run(s3.get('owner/obj1')) is None


def test_s3_http_storage_without_credentials_sends_no_signature(dummy_s3):
    s3 = S3HTTPStorage(endpoint='http://minio:9000', bucket='b', access_key='', secret_key='')
    asyncio.run(s3.put('k', b'v'))
    _, _, headers = dummy_s3.requests[0]
    assert 'Authorization' not in headers


def test_s3_region_detection():
    s3 = S3HTTPStorage(endpoint='https://s3.eu-west-2.amazonaws.com', bucket='b', access_key='a', secret_key='s')
    assert s3.region == 'eu-west-2'
    s3 = S3HTTPStorage(endpoint='https://nyc3.digitaloceanspaces.com', bucket='b', access_key='a', secret_key='s')
    assert s3.region == 'nyc3'


def test_s3_virtual_host_urls():
    s3 = S3HTTPStorage(endpoint='https://example.com', bucket='b', access_key='a', secret_key='s', virtual_host=True)
    assert s3._make_url_and_path('owner/obj') == ('https://b.example.com/owner/obj', '/owner/obj')
    assert s3.host == 'b.example.com'


def test_s3_error_status_raises_storage_error(monkeypatch):
    class FailingClient(DummyClient):
        async def get(self, url, headers=None):
            return DummyResponse(status_code=500, text='Internal Error')

    monkeypatch.setattr('apps.fragments.storage.httpx.AsyncClient', FailingClient)
    s3 = S3HTTPStorage(endpoint='https://example.com', bucket='b', access_key='a', secret_key='s')
    with pytest.raises(StorageError):
        asyncio.run(s3.get('owner/obj1'))


def test_tortoise_store_with_s3_blobs(dummy_s3):
    blobs = S3HTTPStorage(endpoint='https://example.com', bucket='b', access_key='a', secret_key='s')
    run_with_db(lambda: exercise_store(TortoiseFragmentStore(blobs)))


def test_pick_storage(monkeypatch, tmp_path):
    monkeypatch.setattr(storage, 'STORAGE_BACKEND', 'memory')
    assert isinstance(storage.pick_storage(), InMemoryFragmentStore)

    monkeypatch.setattr(storage, 'STORAGE_BACKEND', 'local')
    monkeypatch.setattr(storage, 'LOCAL_STORAGE_PATH', str(tmp_path))
    picked = storage.pick_storage()
    assert isinstance(picked, TortoiseFragmentStore)
    assert isinstance(picked.blobs, LocalStorage)

    monkeypatch.setattr(storage, 'STORAGE_BACKEND', 'DB')
    assert isinstance(storage.pick_storage().blobs, DBStorage)

    monkeypatch.setattr(storage, 'STORAGE_BACKEND', 's3')
    monkeypatch.setattr(storage, 'S3_ENDPOINT', 'https://example.com')
    monkeypatch.setattr(storage, 'S3_BUCKET', 'fragments')
    assert isinstance(storage.pick_storage().blobs, S3HTTPStorage)
