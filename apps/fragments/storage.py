"""FragmentStore: metadata and raw bytes persistence, keyed by (owner_id, fragment_id)."""
import hashlib
import hmac
import os
import re
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional, Protocol, Union, runtime_checkable
from urllib.parse import urlparse

import httpx
from tortoise.exceptions import BaseORMException
from tortoise.transactions import in_transaction

from config.settings import STORAGE_BACKEND, LOCAL_STORAGE_PATH, S3_BUCKET, S3_ENDPOINT, S3_ACCESS_KEY, S3_SECRET_KEY, \
    S3_REGION
from apps.fragments.errors import NotFoundError, StorageError, ValidationError
from apps.fragments.models import FragmentData, FragmentMeta


@runtime_checkable
class FragmentStore(Protocol):
    """Async persistence for fragment metadata records and fragment bytes.

    Absent keys read as ``None``. Backend failures raise StorageError.
    """

    async def write_metadata(self, owner_id: str, record: dict) -> None:
        ...

    async def read_metadata(self, owner_id: str, fragment_id: str) -> Optional[dict]:
        ...

    async def list_metadata(self, owner_id: str, expand: bool = False) -> Union[list[str], list[dict]]:
        ...

    async def write_data(self, owner_id: str, fragment_id: str, data: bytes) -> None:
        ...

    async def read_data(self, owner_id: str, fragment_id: str) -> Optional[bytes]:
        ...

    async def delete(self, owner_id: str, fragment_id: str) -> None:
        """Remove metadata and data; NotFoundError only when both were absent."""
        ...


def _record_id(owner_id: str, record: dict) -> str:
    fragment_id = record.get('id')
    if not fragment_id:
        raise ValidationError('fragment metadata has no id')
    if record.get('ownerId', owner_id) != owner_id:
        raise ValidationError('fragment metadata belongs to another owner')
    return fragment_id


@contextmanager
def _backend_errors(action: str):
    try:
        yield
    except (OSError, httpx.HTTPError, BaseORMException) as e:
        raise StorageError(f'{action} failed: {e}') from e


class InMemoryFragmentStore:
    """Dict-backed store; one instance lives as long as the application."""

    def __init__(self):
        self._metadata: dict[tuple[str, str], dict] = {}
        self._data: dict[tuple[str, str], bytes] = {}

    async def write_metadata(self, owner_id: str, record: dict) -> None:
        fragment_id = _record_id(owner_id, record)
        self._metadata[(owner_id, fragment_id)] = dict(record)

    async def read_metadata(self, owner_id: str, fragment_id: str) -> Optional[dict]:
        record = self._metadata.get((owner_id, fragment_id))
        return dict(record) if record is not None else None

    async def list_metadata(self, owner_id: str, expand: bool = False) -> Union[list[str], list[dict]]:
        records = [record for (owner, _), record in self._metadata.items() if owner == owner_id]
        if expand:
            return [dict(record) for record in records]
        return [record['id'] for record in records]

    async def write_data(self, owner_id: str, fragment_id: str, data: bytes) -> None:
        self._data[(owner_id, fragment_id)] = bytes(data)

    async def read_data(self, owner_id: str, fragment_id: str) -> Optional[bytes]:
        return self._data.get((owner_id, fragment_id))

    async def delete(self, owner_id: str, fragment_id: str) -> None:
        record = self._metadata.pop((owner_id, fragment_id), None)
        data = self._data.pop((owner_id, fragment_id), None)
        if record is None and data is None:
            raise NotFoundError(owner_id, fragment_id)


class BlobStorage(Protocol):
    async def put(self, blob_id: str, data: bytes) -> None:
        ...

    async def get(self, blob_id: str) -> Optional[bytes]:
        ...

    async def delete(self, blob_id: str) -> bool:
        ...


class LocalStorage:
    def __init__(self, base_path: str):
        self.base_path = os.path.realpath(base_path)
        os.makedirs(self.base_path, exist_ok=True)

    def _path(self, blob_id: str) -> str:
        path = os.path.realpath(os.path.join(self.base_path, blob_id))
        if path == self.base_path or os.path.commonpath([self.base_path, path]) != self.base_path:
            raise ValidationError(f'invalid blob id: {blob_id!r}')
        return path

    async def put(self, blob_id: str, data: bytes) -> None:
        path = self._path(blob_id)
        dirpath = os.path.dirname(path)
        if dirpath:
            os.makedirs(dirpath, exist_ok=True)
        with open(path, 'wb') as f:
            f.write(data)

    async def get(self, blob_id: str) -> Optional[bytes]:
        path = self._path(blob_id)
        if not os.path.exists(path):
            return None
        with open(path, 'rb') as f:
            return f.read()

    async def delete(self, blob_id: str) -> bool:
        path = self._path(blob_id)
        if not os.path.exists(path):
            return False
        os.remove(path)
        return True


class DBStorage:
    """Store fragment bytes in a separate DB table (FragmentData)."""

    async def put(self, blob_id: str, data: bytes) -> None:
        # upsert into FragmentData
        async with in_transaction():
            existing = await FragmentData.filter(id=blob_id).first()
            if existing:
                existing.data = data
                await existing.save()
            else:
                await FragmentData.create(id=blob_id, data=data)

    async def get(self, blob_id: str) -> Optional[bytes]:
        row = await FragmentData.filter(id=blob_id).first()
        if not row:
            return None
        return bytes(row.data)

    async def delete(self, blob_id: str) -> bool:
        deleted = await FragmentData.filter(id=blob_id).delete()
        return deleted > 0


class S3HTTPStorage:

    def __init__(
        self,
        endpoint: str,
        bucket: str,
        access_key: str,
        secret_key: str,
        region: str | None = None,
        virtual_host: bool = False,
    ):
        self.endpoint = endpoint.rstrip('/')
        self.bucket = bucket
        self.access_key = access_key
        self.secret_key = secret_key
        self.service = "s3"
        self.virtual_host = virtual_host

        parsed = urlparse(self.endpoint)
        self.host = parsed.netloc
        if virtual_host:
            self.host = f"{bucket}.{self.host}"
        self.region = region or self._extract_region(self.endpoint)

    def _extract_region(self, endpoint: str) -> str:
        """Auto-detect region from endpoint URL"""
        patterns = [
            r's3[.-]([a-z0-9-]+)\.amazonaws\.com',
            r'([a-z0-9-]+)\.digitaloceanspaces\.com',
            r'([a-z0-9-]+)\.linodeobjects\.com',
            r's3\.([a-z0-9-]+)\.backblazeb2\.com',
            r's3\.([a-z0-9-]+)\.wasabisys\.com',
        ]
        for p in patterns:
            match = re.search(p, endpoint)
            if match:
                return match.group(1)

        # MinIO and generic S3 services commonly use "us-east-1"
        return "us-east-1"

    def _sign(self, key: bytes, msg: str) -> bytes:
        return hmac.new(key, msg.encode('utf-8'), hashlib.sha256).digest()

    def _get_signature_key(self, date_stamp: str) -> bytes:
        k_date = self._sign(f"AWS4{self.secret_key}".encode('utf-8'), date_stamp)
        k_region = self._sign(k_date, self.region)
        k_service = self._sign(k_region, self.service)
        return self._sign(k_service, 'aws4_request')

    def _make_url_and_path(self, blob_id: str):
        """
        Supports both:
            - path-style:       https://endpoint/bucket/<owner>/<fragment>
            - virtual-host:     https://bucket.endpoint/<owner>/<fragment>
        """
        if self.virtual_host:
            url = f"{self.endpoint.replace('//', f'//{self.bucket}.')}/{blob_id}"
            path = f"/{blob_id}"
        else:
            url = f"{self.endpoint}/{self.bucket}/{blob_id}"
            path = f"/{self.bucket}/{blob_id}"

        return url, path

    def _auth_headers(self, method: str, path: str, payload: bytes = b'') -> dict:
        if not self.access_key or not self.secret_key:
            return {}

        now = datetime.now(timezone.utc)
        amz_date = now.strftime('%Y%m%dT%H%M%SZ')
        date_stamp = now.strftime('%Y%m%d')

        payload_hash = hashlib.sha256(payload).hexdigest()

        canonical_headers = (
            f'host:{self.host}\n'
            f'x-amz-content-sha256:{payload_hash}\n'
            f'x-amz-date:{amz_date}\n'
        )

        signed_headers = "host;x-amz-content-sha256;x-amz-date"

        canonical_request = (
            f"{method}\n"
            f"{path}\n"
            f""  # no query string
            f"\n{canonical_headers}\n"
            f"{signed_headers}\n"
            f"{payload_hash}"
        )

        credential_scope = f"{date_stamp}/{self.region}/{self.service}/aws4_request"
        string_to_sign = (
            f"AWS4-HMAC-SHA256\n"
            f"{amz_date}\n"
            f"{credential_scope}\n"
            f"{hashlib.sha256(canonical_request.encode()).hexdigest()}"
        )

        signature = hmac.new(
            self._get_signature_key(date_stamp),
            string_to_sign.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

        auth = (
            f"AWS4-HMAC-SHA256 "
            f"Credential={self.access_key}/{credential_scope}, "
            f"SignedHeaders={signed_headers}, "
            f"Signature={signature}"
        )

        return {
            "Authorization": auth,
            "x-amz-date": amz_date,
            "x-amz-content-sha256": payload_hash,
        }

    async def put(self, blob_id: str, data: bytes) -> None:
        url, path = self._make_url_and_path(blob_id)
        headers = self._auth_headers("PUT", path, data)
        headers["Content-Type"] = "application/octet-stream"

        async with httpx.AsyncClient() as client:
            resp = await client.put(url, content=data, headers=headers)
            if resp.status_code not in (200, 201):
                raise StorageError(f"S3 PUT failed: {resp.status_code} {resp.text}")

    async def get(self, blob_id: str) -> Optional[bytes]:
        url, path = self._make_url_and_path(blob_id)
        headers = self._auth_headers("GET", path, b"")

        async with httpx.AsyncClient() as client:
            resp = await client.get(url, headers=headers)
            if resp.status_code == 200:
                return resp.content
            if resp.status_code == 404:
                return None
            raise StorageError(f"S3 GET failed: {resp.status_code} {resp.text}")

    async def delete(self, blob_id: str) -> bool:
        # S3 answers DELETE with 204 whether or not the object existed
        url, path = self._make_url_and_path(blob_id)

        async with httpx.AsyncClient() as client:
            head = await client.head(url, headers=self._auth_headers("HEAD", path, b""))
            if head.status_code == 404:
                return False
            if head.status_code != 200:
                raise StorageError(f"S3 HEAD failed: {head.status_code} {head.text}")
            resp = await client.delete(url, headers=self._auth_headers("DELETE", path, b""))
            if resp.status_code not in (200, 204):
                raise StorageError(f"S3 DELETE failed: {resp.status_code} {resp.text}")
        return True


class TortoiseFragmentStore:
    """Metadata in the ``fragments_meta`` table, bytes in a BlobStorage backend."""

    def __init__(self, blobs: BlobStorage):
        self.blobs = blobs

    @staticmethod
    def _blob_id(owner_id: str, fragment_id: str) -> str:
        return f'{owner_id}/{fragment_id}'

    async def write_metadata(self, owner_id: str, record: dict) -> None:
        fragment_id = _record_id(owner_id, record)
        fields = {key: record[key] for key in ('type', 'size', 'created', 'updated')}
        with _backend_errors('metadata write'):
            async with in_transaction():
                existing = await FragmentMeta.filter(owner_id=owner_id, fragment_id=fragment_id).first()
                if existing:
                    existing.update_from_dict(fields)
                    await existing.save()
                else:
                    await FragmentMeta.create(owner_id=owner_id, fragment_id=fragment_id, **fields)

    async def read_metadata(self, owner_id: str, fragment_id: str) -> Optional[dict]:
        with _backend_errors('metadata read'):
            row = await FragmentMeta.filter(owner_id=owner_id, fragment_id=fragment_id).first()
        return row.to_record() if row else None

    async def list_metadata(self, owner_id: str, expand: bool = False) -> Union[list[str], list[dict]]:
        with _backend_errors('metadata list'):
            query = FragmentMeta.filter(owner_id=owner_id).order_by('id')
            if not expand:
                return list(await query.values_list('fragment_id', flat=True))
            rows = await query
        return [row.to_record() for row in rows]

    async def write_data(self, owner_id: str, fragment_id: str, data: bytes) -> None:
        with _backend_errors('data write'):
            await self.blobs.put(self._blob_id(owner_id, fragment_id), data)

    async def read_data(self, owner_id: str, fragment_id: str) -> Optional[bytes]:
        with _backend_errors('data read'):
            return await self.blobs.get(self._blob_id(owner_id, fragment_id))

    async def delete(self, owner_id: str, fragment_id: str) -> None:
        with _backend_errors('delete'):
            removed_meta = await FragmentMeta.filter(owner_id=owner_id, fragment_id=fragment_id).delete()
            removed_data = await self.blobs.delete(self._blob_id(owner_id, fragment_id))
        if not removed_meta and not removed_data:
            raise NotFoundError(owner_id, fragment_id)


def pick_blob_storage() -> BlobStorage:
    """Pick the byte backend for the Tortoise store from STORAGE_BACKEND (local, db or s3)."""
    storage_type = STORAGE_BACKEND.lower()
    if storage_type == 'db':
        return DBStorage()
    if storage_type == 's3':
        return S3HTTPStorage(endpoint=S3_ENDPOINT, bucket=S3_BUCKET, region=S3_REGION,
                             access_key=S3_ACCESS_KEY, secret_key=S3_SECRET_KEY, virtual_host=False)
    return LocalStorage(LOCAL_STORAGE_PATH)


def pick_storage() -> FragmentStore:
    """Pick the FragmentStore implementation based on environment variables.

    ``memory`` (the default) keeps everything in process; ``local``, ``db`` and
    ``s3`` keep metadata in the database and bytes in the named backend.
    """
    if STORAGE_BACKEND.lower() == 'memory':
        return InMemoryFragmentStore()
    return TortoiseFragmentStore(pick_blob_storage())
