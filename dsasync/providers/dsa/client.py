import logging
from pathlib import Path
from typing import Any

import requests

from .models import ParentType
from .upload import DEFAULT_CHUNK_SIZE, UploadSession, plan_chunks, read_chunks

API_PREFIX = "/api/v1"
SEARCH_LIMIT = 50

logger = logging.getLogger("dsa")


class DSAClientError(RuntimeError):
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(DSAClientError):
    pass


class DSAClient:
    """Girder REST client holding one session token.

    Build a new instance for every sync run; the token obtained by
    :meth:`authenticate` is never shared between runs.
    """

    def __init__(
        self,
        host: str,
        username: str = "",
        password: str = "",
        auth_token: str = "",
        timeout: int = 60,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        self.host = (host or "").rstrip("/")
        self.username = username or ""
        self.password = password or ""
        self.static_token = auth_token or ""
        self.timeout = timeout
        self.chunk_size = chunk_size
        self.token: str | None = None

    def _url(self, path: str) -> str:
        return f"{self.host}{API_PREFIX}/{path.lstrip('/')}"

    def _headers(self, content_type: str | None = "application/x-www-form-urlencoded") -> dict[str, str]:
        if not self.token:
            raise DSAClientError("not_authenticated")
        headers = {"Girder-Token": self.token, "Accept": "application/json"}
        if content_type:
            headers["Content-Type"] = content_type
        return headers

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any = None,
        data: bytes | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        url = self._url(path)
        logger.debug("request %s %s params=%s", method, url, params)
        try:
            res = requests.request(
                method,
                url,
                params=params,
                json=json_body,
                data=data,
                headers=headers if headers is not None else self._headers(),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise DSAClientError(f"request_failed: {method} {path}: {e}") from e
        return self._check_response(res, method, path)

    def _check_response(self, res, method: str, path: str) -> Any:
        if res.status_code >= 400:
            text = (res.text or "").strip()
            raise DSAClientError(
                f"dsa_error: {method} {path} status={res.status_code} body={text[:200]}",
                status_code=res.status_code,
            )
        if not res.content:
            return None
        try:
            return res.json()
        except ValueError as e:
            raise DSAClientError(f"invalid_response: {method} {path}: {e}", status_code=res.status_code) from e

    @staticmethod
    def _as_list(payload: Any) -> list[dict[str, Any]]:
        if not isinstance(payload, list):
            return []
        return [item for item in payload if isinstance(item, dict)]

    # -- auth --------------------------------------------------------------

    def authenticate(self) -> str:
        if self.static_token:
            self.token = self.static_token
            logger.info("authenticated_with_static_token host=%s", self.host)
            return self.token

        if not self.username or not self.password:
            raise AuthenticationError("credentials_missing")

        try:
            res = requests.request(
                "GET",
                self._url("user/authentication"),
                auth=(self.username, self.password),
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise AuthenticationError(f"auth_request_failed: {e}") from e

        if res.status_code >= 400:
            raise AuthenticationError(f"auth_failed: status={res.status_code}", status_code=res.status_code)
        try:
            payload = res.json()
        except ValueError as e:
            raise AuthenticationError(f"auth_invalid_response: {e}") from e

        token = ((payload or {}).get("authToken") or {}).get("token") if isinstance(payload, dict) else None
        if not isinstance(token, str) or not token:
            raise AuthenticationError("auth_token_missing")
        self.token = token
        logger.info("authenticated user=%s host=%s", self.username, self.host)
        return token

    # -- collections / folders ---------------------------------------------

    def find_collection_by_name(self, name: str) -> list[dict[str, Any]]:
        payload = self._request(
            "GET",
            "collection",
            params={"text": name, "limit": SEARCH_LIMIT, "offset": 0, "sort": "name", "sortdir": 1},
        )
        return self._as_list(payload)

    def create_collection(self, name: str) -> dict[str, Any]:
        return self._request("POST", "collection", params={"name": name, "public": "false"})

    def find_folder(self, parent_type: ParentType | str, parent_id: str, name: str) -> list[dict[str, Any]]:
        payload = self._request(
            "GET",
            "folder",
            params={
                "parentType": ParentType(parent_type).value,
                "parentId": parent_id,
                "name": name,
                "limit": SEARCH_LIMIT,
                "offset": 0,
                "sort": "lowerName",
                "sortdir": 1,
            },
        )
        return self._as_list(payload)

    def create_folder(self, parent_type: ParentType | str, parent_id: str, name: str) -> dict[str, Any]:
        return self._request(
            "POST",
            "folder",
            params={
                "parentType": ParentType(parent_type).value,
                "parentId": parent_id,
                "name": name,
                "reuseExisting": "false",
            },
        )

    def set_folder_metadata(self, folder_id: str, metadata: dict[str, Any]) -> dict[str, Any]:
        return self._request(
            "PUT",
            f"folder/{folder_id}/metadata",
            params={"allowNull": "false"},
            json_body=metadata,
            headers=self._headers("application/json"),
        )

    # -- items / files -----------------------------------------------------

    def find_item(self, parent_id: str, name: str) -> list[dict[str, Any]]:
        payload = self._request(
            "GET",
            "item",
            params={
                "folderId": parent_id,
                "name": name,
                "limit": SEARCH_LIMIT,
                "offset": 0,
                "sort": "lowerName",
                "sortdir": 1,
            },
        )
        return self._as_list(payload)

    def delete_item(self, item_id: str) -> None:
        self._request("DELETE", f"item/{item_id}")

    def delete_file(self, file_id: str) -> None:
        self._request("DELETE", f"file/{file_id}")

    # -- chunked upload ----------------------------------------------------

    def create_upload(self, parent_id: str, parent_type: ParentType | str, name: str, size: int) -> dict[str, Any]:
        return self._request(
            "POST",
            "file",
            params={
                "parentType": ParentType(parent_type).value,
                "parentId": parent_id,
                "name": name,
                "size": int(size),
            },
        )

    def upload_chunk(self, upload_id: str, offset: int, data: bytes) -> dict[str, Any]:
        return self._request(
            "POST",
            "file/chunk",
            params={"offset": int(offset), "uploadId": upload_id},
            data=data,
            headers=self._headers("application/octet-stream"),
        )

    def upload_file(
        self,
        parent_id: str,
        parent_type: ParentType | str,
        file_path: str,
        name: str,
        size: int,
    ) -> dict[str, Any]:
        path = Path(file_path)
        if not path.is_file():
            raise DSAClientError(f"local_file_not_found: {file_path}")

        created = self.create_upload(parent_id, parent_type, name, size)
        if not isinstance(created, dict) or not created.get("_id"):
            raise DSAClientError(f"upload_init_failed: {name}")

        session = UploadSession(
            upload_id=str(created["_id"]),
            parent_id=parent_id,
            parent_type=ParentType(parent_type).value,
            name=name,
            size=int(size),
            chunks=plan_chunks(int(size), self.chunk_size),
        )
        # Zero-byte uploads are finalized by the init call itself.
        if not session.chunks:
            logger.debug("upload_complete name=%s size=0", name)
            return created

        result: dict[str, Any] = created
        for chunk, data in read_chunks(path, session.chunks):
            try:
                result = self.upload_chunk(session.upload_id, chunk.offset, data)
            except DSAClientError as e:
                raise DSAClientError(
                    f"chunk_upload_failed: {name} chunk={chunk.index} offset={chunk.offset}: {e}",
                    status_code=e.status_code,
                ) from e
            session.sent += 1
            logger.debug(
                "chunk_uploaded name=%s chunk=%s/%s offset=%s size=%s",
                name,
                chunk.index + 1,
                len(session.chunks),
                chunk.offset,
                chunk.size,
            )

        logger.debug("upload_complete name=%s size=%s chunks=%s", name, size, len(session.chunks))
        return result

    def upload_to_existing(self, upload_id: str, file_path: str) -> dict[str, Any]:
        """Send a whole local file as the single chunk of an open upload."""
        path = Path(file_path)
        if not path.is_file():
            raise DSAClientError(f"local_file_not_found: {file_path}")
        return self.upload_chunk(upload_id, 0, path.read_bytes())
