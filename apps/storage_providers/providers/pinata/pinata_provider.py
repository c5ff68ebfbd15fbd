import json
import logging
import time

import httpx

from ..base import BaseStorageProvider, ContentStream
from .pinata_validator import PinataConfigValidator
from apps.files.exceptions import StorageUploadError, StorageDownloadError, UpstreamTimeoutError

logger = logging.getLogger(__name__)


class PinataStorageProvider(BaseStorageProvider):
    """
    The implementation of the storage provider for the Pinata IPFS pinning service.
    """

    STREAM_CHUNK_SIZE = 64 * 1024

    def __init__(self, config, skip_validation=False, validator=None):
        super().__init__(config)

        if not skip_validation:
            if not validator:
                validator = PinataConfigValidator(config)
            if not validator.validate(skip_api_check=True):
                raise ValueError("Invalid Pinata storage provider configuration")

        self.jwt = self.config.get('jwt')
        self.api_base = (self.config.get('api_url') or "https://api.pinata.cloud").rstrip('/')
        self.gateway_base = (self.config.get('gateway_url') or "https://gateway.pinata.cloud").rstrip('/')

        self.metadata_timeout = self.config.get('metadata_timeout', 15.0)
        self.content_timeout = self.config.get('content_timeout', 30.0)
        self.cid_version = self.config.get('cid_version', 1)

    def _auth_headers(self) -> dict:
        return {"Authorization": f"Bearer {self.jwt}"}

    def gateway_url(self, cid: str) -> str:
        return f"{self.gateway_base}/ipfs/{cid}"

    async def pin_file(self, content: bytes, name: str) -> str:
        """
        Pins raw bytes with pinFileToIPFS and returns the IpfsHash.
        Raises StorageUploadError on failure.
        """
        url = f"{self.api_base}/pinning/pinFileToIPFS"
        files = {
            'file': (name, content, 'application/octet-stream')
        }
        data = {
            'pinataMetadata': json.dumps({"name": name}),
            'pinataOptions': json.dumps({"cidVersion": self.cid_version}),
        }

        logger.info(f"Pinning file to IPFS: {name} ({len(content)} bytes)")
        try:
            async with httpx.AsyncClient(timeout=self.content_timeout) as client:
                response = await client.post(url, headers=self._auth_headers(), files=files, data=data)
        except httpx.TimeoutException as e:
            logger.error(f"Timed out pinning file {name}: {e}")
            raise UpstreamTimeoutError("Pinning service timed out") from e
        except httpx.HTTPError as e:
            logger.exception(f"HTTP error while pinning file {name}: {e}")
            raise StorageUploadError(f"Network error pinning file: {str(e)}") from e

        return self._extract_hash(response, name)

    async def pin_json(self, content, name: str, keyvalues: dict) -> str:
        """
        Pins a JSON document with pinJSONToIPFS, tagged with keyvalues.
        Raises StorageUploadError on failure.
        """
        url = f"{self.api_base}/pinning/pinJSONToIPFS"
        payload = {
            "pinataContent": content,
            "pinataMetadata": {"name": name, "keyvalues": keyvalues},
            "pinataOptions": {"cidVersion": self.cid_version},
        }

        logger.debug(f"Pinning JSON document: {name}")
        try:
            async with httpx.AsyncClient(timeout=self.metadata_timeout) as client:
                response = await client.post(url, headers=self._auth_headers(), json=payload)
        except httpx.TimeoutException as e:
            logger.error(f"Timed out pinning JSON {name}: {e}")
            raise UpstreamTimeoutError("Pinning service timed out") from e
        except httpx.HTTPError as e:
            logger.exception(f"HTTP error while pinning JSON {name}: {e}")
            raise StorageUploadError(f"Network error pinning JSON: {str(e)}") from e

        return self._extract_hash(response, name)

    def _extract_hash(self, response, name) -> str:
        if response.status_code != 200:
            error_text = response.text
            logger.error(f"Pin failed for {name}. Status: {response.status_code}, Error: {error_text}")
            raise StorageUploadError(
                f"Pinata API error (status {response.status_code}): {error_text}",
                status_code=self._passthrough_status(response.status_code),
            )

        ipfs_hash = response.json().get('IpfsHash')
        if not ipfs_hash:
            raise StorageUploadError("Pinata upload succeeded but returned no IPFS hash")
        logger.info(f"Pinned {name}: {ipfs_hash}")
        return ipfs_hash

    async def find_latest(self, keyvalues: dict):
        """
        Looks up pins tagged with keyvalues and returns the CID of the one with
        the most recent 'timestamp' keyvalue (falling back to the pin date).
        Raises StorageDownloadError when the index cannot be queried.
        """
        url = f"{self.api_base}/data/pinList"
        query = {key: {"value": value, "op": "eq"} for key, value in keyvalues.items()}
        params = {
            "status": "pinned",
            "pageLimit": self.config.get('index_page_limit', 10),
            "metadata[keyvalues]": json.dumps(query),
        }

        try:
            async with httpx.AsyncClient(timeout=self.metadata_timeout) as client:
                response = await client.get(url, headers=self._auth_headers(), params=params)
        except httpx.TimeoutException as e:
            raise UpstreamTimeoutError("Pinning index query timed out") from e
        except httpx.HTTPError as e:
            raise StorageDownloadError(f"Network error querying pin index: {str(e)}") from e

        if response.status_code != 200:
            raise StorageDownloadError(
                f"Pinata API error (status {response.status_code}): {response.text}",
                status_code=self._passthrough_status(response.status_code),
            )

        rows = response.json().get('rows') or []
        if not rows:
            return None

        def recency(row):
            row_keyvalues = (row.get('metadata') or {}).get('keyvalues') or {}
            return row_keyvalues.get('timestamp') or row.get('date_pinned') or ''

        latest = max(rows, key=recency)
        return latest.get('ipfs_pin_hash')

    async def fetch(self, cid, max_bytes=None, timeout=None) -> bytes:
        """
        Downloads content through the gateway.
        Raises StorageDownloadError on failure, including when max_bytes is exceeded.
        """
        url = self.gateway_url(cid)
        headers = {
            **self._auth_headers(),
            "Cache-Control": "no-cache",
            "Pragma": "no-cache",
        }
        params = {"cacheBust": int(time.time() * 1000)}

        try:
            async with httpx.AsyncClient(timeout=timeout or self.content_timeout) as client:
                async with client.stream("GET", url, headers=headers, params=params) as response:
                    if response.status_code != 200:
                        await response.aread()
                        raise StorageDownloadError(
                            f"Gateway error (status {response.status_code})",
                            status_code=self._passthrough_status(response.status_code),
                        )
                    body = bytearray()
                    async for chunk in response.aiter_bytes():
                        body.extend(chunk)
                        if max_bytes is not None and len(body) > max_bytes:
                            raise StorageDownloadError(
                                f"Content exceeds the {max_bytes} byte limit",
                                status_code=413,
                            )
                    return bytes(body)
        except httpx.TimeoutException as e:
            logger.error(f"Timed out fetching {cid}: {e}")
            raise UpstreamTimeoutError("File download timeout") from e
        except httpx.HTTPError as e:
            logger.exception(f"HTTP error fetching {cid}: {e}")
            raise StorageDownloadError(f"Network error downloading content: {str(e)}") from e

    async def open_stream(self, cid) -> ContentStream:
        """
        Opens a streaming gateway download. The returned chunks iterator owns the
        HTTP client and closes it once exhausted or closed.
        """
        url = self.gateway_url(cid)
        client = httpx.AsyncClient(timeout=self.content_timeout)
        try:
            request = client.build_request("GET", url, headers=self._auth_headers())
            response = await client.send(request, stream=True)
        except httpx.TimeoutException as e:
            await client.aclose()
            raise UpstreamTimeoutError("File download timeout") from e
        except httpx.HTTPError as e:
            await client.aclose()
            raise StorageDownloadError(f"Network error downloading content: {str(e)}") from e

        if response.status_code != 200:
            await response.aclose()
            await client.aclose()
            if response.status_code == 404:
                raise StorageDownloadError("File not found on IPFS", status_code=404)
            raise StorageDownloadError(
                f"Gateway error (status {response.status_code})",
                status_code=self._passthrough_status(response.status_code),
            )

        length = response.headers.get('content-length')

        async def chunks():
            try:
                async for chunk in response.aiter_bytes(self.STREAM_CHUNK_SIZE):
                    yield chunk
            finally:
                await response.aclose()
                await client.aclose()

        return ContentStream(
            chunks=chunks(),
            content_type=response.headers.get('content-type') or 'application/octet-stream',
            content_length=int(length) if length and length.isdigit() else None,
        )

    @staticmethod
    def _passthrough_status(upstream_status):
        # Statuses worth surfacing as-is, everything else is a bad gateway
        if upstream_status in (401, 404, 413, 429):
            return upstream_status
        return None
