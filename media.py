"""
Image CDN (Cloudinary) client.

Files are validated locally before upload; invalid files never leave the
process. Derived images are addressed by URL transformations, so the URL
helpers below do no I/O.
"""

import hashlib
import logging
import time
from typing import Any, Dict, Optional
from urllib.parse import quote

import requests

from config import get_settings
from errors import MediaValidationError

logger = logging.getLogger(__name__)

ALLOWED_IMAGE_TYPES = ["image/jpeg", "image/png", "image/webp", "image/gif"]


def validate_image(content_type: Optional[str], size: int, max_bytes: int) -> None:
    """Raise MediaValidationError if the file is empty, too large or not an allowed image type."""
    if not size:
        raise MediaValidationError("No file provided")
    if size > max_bytes:
        limit_mb = max_bytes // (1024 * 1024)
        raise MediaValidationError(f"File size exceeds {limit_mb}MB limit")
    if content_type not in ALLOWED_IMAGE_TYPES:
        raise MediaValidationError("Invalid file type. Allowed: JPG, PNG, WebP, GIF")


class CloudinaryService:

    def __init__(self, cloud_name: Optional[str] = None, upload_preset: Optional[str] = None,
                 api_key: Optional[str] = None, api_secret: Optional[str] = None,
                 timeout: Optional[int] = None):
        settings = get_settings()
        self.cloud_name = cloud_name or settings.cloudinary_cloud_name
        self.upload_preset = upload_preset or settings.cloudinary_upload_preset
        self.api_key = api_key or settings.cloudinary_api_key
        self.api_secret = api_secret or settings.cloudinary_api_secret
        self.timeout = timeout or settings.http_timeout

    @property
    def api_url(self) -> str:
        return f"https://api.cloudinary.com/v1_1/{self.cloud_name}/image"

    @property
    def delivery_url(self) -> str:
        return f"https://res.cloudinary.com/{self.cloud_name}/image/upload"

    def upload_image(self, content: bytes, filename: str, content_type: Optional[str],
                     max_bytes: Optional[int] = None, folder: Optional[str] = None,
                     tags: Optional[str] = None, public_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Upload an image and return {"success": True, "data": {...}} with the
        hosted URL plus thumbnail/optimized/cropped variants, or
        {"success": False, "error": message}.

        Raises MediaValidationError before any network call if the file is
        rejected locally.
        """
        if max_bytes is None:
            max_bytes = get_settings().max_item_image_bytes
        validate_image(content_type, len(content or b""), max_bytes)

        form = {
            "upload_preset": self.upload_preset,
            "quality": "auto",
        }
        if folder:
            form["folder"] = folder
        if tags:
            form["tags"] = tags
        if public_id:
            form["public_id"] = public_id

        try:
            response = requests.post(
                f"{self.api_url}/upload",
                data=form,
                files={"file": (filename, content, content_type)},
                timeout=self.timeout,
            )
            body = response.json()
            if response.status_code >= 400:
                message = (body.get("error") or {}).get("message") or "Failed to upload image"
                logger.error(f"Cloudinary upload rejected: {message}")
                return {"success": False, "error": message}
        except (requests.RequestException, ValueError) as e:
            logger.error(f"Cloudinary upload error: {e}")
            return {"success": False, "error": str(e) or "Failed to upload image"}

        pid = body["public_id"]
        width = body.get("width") or 0
        height = body.get("height") or 0
        return {
            "success": True,
            "data": {
                "public_id": pid,
                "url": body.get("secure_url"),
                "format": body.get("format"),
                "bytes": body.get("bytes"),
                "width": width,
                "height": height,
                "aspect_ratio": (width / height) if height else None,
                "created_at": body.get("created_at"),
                "version": body.get("version"),
                "thumbnail_url": self.get_thumbnail_url(pid, 300, 300),
                "optimized_url": self.get_optimized_url(pid, 800),
                "cropped_url": self.get_cropped_url(pid, 400, 400),
            },
        }

    def get_thumbnail_url(self, public_id: str, width: int = 300, height: int = 300) -> str:
        return f"{self.delivery_url}/c_fill,w_{width},h_{height},q_auto/{public_id}"

    def get_optimized_url(self, public_id: str, width: int = 800) -> str:
        return f"{self.delivery_url}/c_limit,w_{width},q_auto:good/{public_id}"

    def get_cropped_url(self, public_id: str, width: int = 400, height: int = 400) -> str:
        # g_face keeps faces centred, used for profile pictures
        return f"{self.delivery_url}/c_fill,w_{width},h_{height},g_face,q_auto/{public_id}"

    def get_webp_url(self, public_id: str, width: int = 800) -> str:
        return f"{self.delivery_url}/f_webp,c_limit,w_{width},q_auto:good/{public_id}"

    def get_responsive_srcset(self, public_id: str) -> str:
        return ", ".join(f"{self.get_optimized_url(public_id, w)} {w}w" for w in (400, 600, 800, 1000, 1200))

    def get_multi_format_urls(self, public_id: str) -> Dict[str, str]:
        return {
            "jpeg": f"{self.delivery_url}/f_jpg,q_auto/{public_id}",
            "png": f"{self.delivery_url}/f_png,q_auto/{public_id}",
            "webp": self.get_webp_url(public_id),
            "avif": f"{self.delivery_url}/f_avif,q_auto/{public_id}",
            "thumbnail": self.get_thumbnail_url(public_id, 200, 200),
            "optimized": self.get_optimized_url(public_id, 800),
        }

    def add_watermark(self, public_id: str, text: str) -> str:
        return f"{self.delivery_url}/l_text:Arial_30:{quote(text, safe='')},o_50,y_10/{public_id}"

    def add_blur(self, public_id: str, intensity: int = 300) -> str:
        intensity = max(1, min(intensity, 2000))
        return f"{self.delivery_url}/e_blur:{intensity}/{public_id}"

    def get_image_info(self, public_id: str) -> Dict[str, Any]:
        try:
            response = requests.get(f"{self.delivery_url}/fl_getinfo/{public_id}", timeout=self.timeout)
            response.raise_for_status()
            return {"success": True, "data": response.json()}
        except (requests.RequestException, ValueError) as e:
            logger.error(f"Error fetching image info for {public_id}: {e}")
            return {"success": False, "error": "Failed to fetch image information"}

    def _sign(self, params: Dict[str, Any]) -> str:
        to_sign = "&".join(f"{k}={params[k]}" for k in sorted(params))
        return hashlib.sha1(f"{to_sign}{self.api_secret}".encode("utf-8")).hexdigest()

    def delete_image(self, public_id: str) -> Dict[str, Any]:
        if not public_id:
            return {"success": False, "error": "Public ID is required"}
        if not (self.api_key and self.api_secret):
            logger.warning(f"Cloudinary API credentials not configured; image {public_id} was not deleted")
            return {"success": False, "error": "Image deletion is not configured"}

        params = {"public_id": public_id, "timestamp": int(time.time())}
        form = dict(params, api_key=self.api_key, signature=self._sign(params))
        try:
            response = requests.post(f"{self.api_url}/destroy", data=form, timeout=self.timeout)
            response.raise_for_status()
            result = response.json().get("result")
        except (requests.RequestException, ValueError) as e:
            logger.error(f"Cloudinary delete error for {public_id}: {e}")
            return {"success": False, "error": str(e) or "Failed to delete image"}
        if result != "ok":
            return {"success": False, "error": f"Image not deleted: {result}"}
        return {"success": True}
