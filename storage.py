"""
Object storage gateway backed by Cloudinary's REST API.

Only two calls are needed: upload a local file and destroy an object by
public id. Both are signed with the account secret and sent with `requests`.
"""

import hashlib
import logging
import os
import time
from typing import Any, Dict, Optional

import requests

from errors import StorageUnavailable
from schemas import StoredObject

logger = logging.getLogger(__name__)

CLOUDINARY_CLOUD_NAME = os.getenv("CLOUDINARY_CLOUD_NAME")
CLOUDINARY_API_KEY = os.getenv("CLOUDINARY_API_KEY")
CLOUDINARY_API_SECRET = os.getenv("CLOUDINARY_API_SECRET")
UPLOAD_TIMEOUT = float(os.getenv("UPLOAD_TIMEOUT", "60"))
DELETE_TIMEOUT = 30.0

API_BASE = "https://api.cloudinary.com/v1_1"

# Params that are sent but never part of the signature.
UNSIGNED_PARAMS = {"file", "api_key", "resource_type", "cloud_name"}


def sign_params(params: Dict[str, Any], api_secret: str) -> str:
    to_sign = "&".join(
        f"{k}={_param_value(v)}"
        for k, v in sorted(params.items())
        if k not in UNSIGNED_PARAMS and v is not None and v != ""
    )
    return hashlib.sha1(f"{to_sign}{api_secret}".encode("utf-8")).hexdigest()


def _param_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class CloudinaryGateway:
    def __init__(
        self,
        cloud_name: Optional[str] = None,
        api_key: Optional[str] = None,
        api_secret: Optional[str] = None,
        upload_timeout: float = UPLOAD_TIMEOUT,
    ):
        self.cloud_name = cloud_name or CLOUDINARY_CLOUD_NAME
        self.api_key = api_key or CLOUDINARY_API_KEY
        self.api_secret = api_secret or CLOUDINARY_API_SECRET
        self.upload_timeout = upload_timeout

    @property
    def configured(self) -> bool:
        return bool(self.cloud_name and self.api_key and self.api_secret)

    def _endpoint(self, resource_type: str, action: str) -> str:
        return f"{API_BASE}/{self.cloud_name}/{resource_type}/{action}"

    def _signed(self, params: Dict[str, Any]) -> Dict[str, str]:
        params = {k: v for k, v in params.items() if v is not None}
        params["timestamp"] = int(time.time())
        params["signature"] = sign_params(params, self.api_secret)
        params["api_key"] = self.api_key
        return {k: _param_value(v) for k, v in params.items()}

    def _post(self, url: str, data: Dict[str, str], timeout: float, files=None) -> Dict[str, Any]:
        if not self.configured:
            raise StorageUnavailable("Object storage is not configured")
        try:
            resp = requests.post(url, data=data, files=files, timeout=timeout)
        except requests.Timeout as e:
            raise StorageUnavailable(f"Object storage timed out after {timeout:g}s") from e
        except requests.RequestException as e:
            raise StorageUnavailable(f"Object storage request failed: {e}") from e
        try:
            body = resp.json()
        except ValueError:
            body = {}
        if not resp.ok or "error" in body:
            message = (body.get("error") or {}).get("message") or f"HTTP {resp.status_code}"
            raise StorageUnavailable(f"Object storage rejected the request: {message}")
        return body

    def upload(
        self,
        local_path: str,
        folder: str,
        public_id: Optional[str] = None,
        overwrite: bool = False,
        resource_type: str = "auto",
        timeout: Optional[float] = None,
    ) -> StoredObject:
        """Upload a local file. Passing an existing public_id with overwrite replaces it in place."""
        data = self._signed({
            "folder": folder,
            "public_id": public_id,
            "overwrite": overwrite,
        })
        with open(local_path, "rb") as fh:
            body = self._post(
                self._endpoint(resource_type, "upload"),
                data,
                timeout or self.upload_timeout,
                files={"file": fh},
            )
        stored = StoredObject(
            url=body.get("secure_url") or body.get("url"),
            public_id=body["public_id"],
            format=body.get("format"),
            width=body.get("width"),
            height=body.get("height"),
        )
        logger.info("Uploaded %s to %s", local_path, stored.public_id)
        return stored

    def delete(self, public_id: str, resource_type: str = "image") -> bool:
        """Destroy a stored object. An id that no longer exists counts as deleted."""
        body = self._post(
            self._endpoint(resource_type, "destroy"),
            self._signed({"public_id": public_id}),
            DELETE_TIMEOUT,
        )
        result = body.get("result")
        if result not in ("ok", "not found"):
            raise StorageUnavailable(f"Unexpected destroy result for {public_id}: {result}")
        logger.info("Deleted stored object %s (%s)", public_id, result)
        return True
