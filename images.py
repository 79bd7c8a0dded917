"""
Image uploads.

Files land under UPLOAD_PATH/<folder>/ and are served by the static mount at
``/uploads``. Uploads are shrunk to fit 1200x1200 and re-encoded as WebP; if
Pillow cannot decode the file the original bytes are kept instead, so stored
names end in either ``.webp`` or the upload's own extension.
"""
import io
import logging
import os
import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from PIL import Image, UnidentifiedImageError

import config
from errors import BadRequest
from products import add_multiple_images, get_product_doc
from schemas import FileDelete, ProductImage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/upload", tags=["upload"])

ALLOWED_MIME_TYPES = {"image/jpeg", "image/jpg", "image/png", "image/gif", "image/webp"}
FOLDERS = ("products", "categories", "collections", "users", "temp")
MAX_DIMENSION = 1200
WEBP_QUALITY = 85
MAX_FILES = 10
URL_PREFIX = "/uploads"


class ImageStore:
    def __init__(self, upload_root: str, max_file_size: int = config.MAX_FILE_SIZE):
        self.upload_root = os.path.abspath(upload_root)
        self.max_file_size = max_file_size
        for folder in FOLDERS:
            os.makedirs(os.path.join(self.upload_root, folder), exist_ok=True)

    def _validate(self, data: bytes, content_type: Optional[str], folder: str):
        if len(data) > self.max_file_size:
            raise BadRequest(f"File size exceeds maximum allowed size of {self.max_file_size // (1024 * 1024)}MB")
        if content_type not in ALLOWED_MIME_TYPES:
            raise BadRequest(f"Invalid file type. Allowed types: {', '.join(sorted(ALLOWED_MIME_TYPES))}")
        if folder not in FOLDERS:
            raise BadRequest(f"Invalid folder. Allowed folders: {', '.join(FOLDERS)}")

    @staticmethod
    def _to_webp(data: bytes) -> bytes:
        with Image.open(io.BytesIO(data)) as img:
            img.thumbnail((MAX_DIMENSION, MAX_DIMENSION))
            if img.mode not in ("RGB", "RGBA"):
                img = img.convert("RGBA" if "A" in img.getbands() or "transparency" in img.info else "RGB")
            out = io.BytesIO()
            img.save(out, format="WEBP", quality=WEBP_QUALITY)
            return out.getvalue()

    def save(self, data: bytes, content_type: Optional[str], filename: Optional[str], folder: str = "temp") -> str:
        """Store one upload and return its public path (``/uploads/<folder>/<name>``)."""
        self._validate(data, content_type, folder)
        name = uuid.uuid4().hex
        try:
            data = self._to_webp(data)
            name += ".webp"
        except (UnidentifiedImageError, OSError, ValueError) as e:
            logger.warning("Image processing failed for %s, storing original: %s", filename, e)
            name += os.path.splitext(filename or "")[1].lower()

        with open(os.path.join(self.upload_root, folder, name), "wb") as f:
            f.write(data)
        return f"{URL_PREFIX}/{folder}/{name}"

    def _local_path(self, file_path: str) -> Optional[str]:
        if config.PUBLIC_BASE_URL and file_path.startswith(config.PUBLIC_BASE_URL):
            file_path = file_path[len(config.PUBLIC_BASE_URL):]
        if not file_path.startswith(URL_PREFIX + "/"):
            return None
        relative = file_path[len(URL_PREFIX) + 1:]
        path = os.path.abspath(os.path.join(self.upload_root, relative))
        if os.path.commonpath([path, self.upload_root]) != self.upload_root or path == self.upload_root:
            return None
        return path

    def delete_file(self, file_path: str) -> bool:
        path = self._local_path(file_path)
        if path is None or not os.path.isfile(path):
            return False
        try:
            os.remove(path)
        except OSError as e:
            logger.error("Error deleting file %s: %s", file_path, e)
            return False
        return True

    @staticmethod
    def file_url(file_path: str) -> str:
        return f"{config.PUBLIC_BASE_URL.rstrip('/')}{file_path}"


_store: Optional[ImageStore] = None


def get_image_store() -> ImageStore:
    global _store
    if _store is None:
        _store = ImageStore(config.UPLOAD_PATH, config.MAX_FILE_SIZE)
    return _store


def _save_upload(store: ImageStore, file: UploadFile, folder: str) -> str:
    # one byte past the limit is enough for the size check to reject it
    data = file.file.read(store.max_file_size + 1)
    return store.save(data, file.content_type, file.filename, folder)


def _single(store: ImageStore, file: Optional[UploadFile], folder: str, message: str) -> dict:
    if file is None:
        raise BadRequest("No file provided")
    file_path = _save_upload(store, file, folder)
    return {"message": message, "file_path": file_path, "url": store.file_url(file_path)}


def _many(store: ImageStore, files: Optional[List[UploadFile]], folder: str) -> List[str]:
    if not files:
        raise BadRequest("No files provided")
    if len(files) > MAX_FILES:
        raise BadRequest(f"At most {MAX_FILES} files per upload")
    return [_save_upload(store, f, folder) for f in files]


@router.post("/single")
def upload_single(file: UploadFile = File(None), folder: str = Form("temp"), store: ImageStore = Depends(get_image_store)):
    return _single(store, file, folder, "File uploaded successfully")


@router.post("/multiple")
def upload_multiple(files: List[UploadFile] = File(None), folder: str = Form("temp"), store: ImageStore = Depends(get_image_store)):
    file_paths = _many(store, files, folder)
    return {
        "message": "Files uploaded successfully",
        "file_paths": file_paths,
        "urls": [store.file_url(p) for p in file_paths],
    }


@router.post("/product-image")
def upload_product_image(file: UploadFile = File(None), store: ImageStore = Depends(get_image_store)):
    return _single(store, file, "products", "Product image uploaded successfully")


@router.post("/product-images-multiple")
def upload_product_images(
    files: List[UploadFile] = File(None),
    product_id: Optional[str] = Form(None),
    color: Optional[str] = Form(None),
    store: ImageStore = Depends(get_image_store),
):
    if not product_id:
        raise BadRequest("Product ID is required")
    get_product_doc(product_id)
    file_paths = _many(store, files, "products")
    images = [
        ProductImage(url=store.file_url(p), color=color or None, is_main=(i == 0), order=i)
        for i, p in enumerate(file_paths)
    ]
    return {
        "message": "Product images uploaded and saved successfully",
        "images": add_multiple_images(product_id, images),
        "file_paths": file_paths,
    }


@router.post("/category-image")
def upload_category_image(file: UploadFile = File(None), store: ImageStore = Depends(get_image_store)):
    return _single(store, file, "categories", "Category image uploaded successfully")


@router.post("/collection-image")
def upload_collection_image(file: UploadFile = File(None), store: ImageStore = Depends(get_image_store)):
    return _single(store, file, "collections", "Collection image uploaded successfully")


@router.post("/user-avatar")
def upload_user_avatar(file: UploadFile = File(None), store: ImageStore = Depends(get_image_store)):
    return _single(store, file, "users", "User avatar uploaded successfully")


@router.delete("/file")
def delete_upload(data: FileDelete, store: ImageStore = Depends(get_image_store)):
    deleted = store.delete_file(data.file_path)
    return {"message": "File deleted successfully" if deleted else "File not found", "deleted": deleted}
