"""
File storage — local disk.

The workflow only keeps the returned reference (``attachment_name`` /
``file_url``); bytes never go through the document model.
"""

import logging
import os
import uuid

from flask import current_app
from werkzeug.utils import secure_filename

from sop_manager.core.exceptions import ValidationError

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {"pdf", "doc", "docx", "xls", "xlsx", "ppt", "pptx", "txt", "png", "jpg", "jpeg"}


class LocalFileStorage:
    """Stores uploads under UPLOAD_FOLDER/<logical_path>/ with a unique prefix."""

    def __init__(self, root: str | None = None, url_prefix: str | None = None):
        self.root = root or current_app.config["UPLOAD_FOLDER"]
        self.url_prefix = (url_prefix or current_app.config.get("UPLOAD_URL_PREFIX", "/uploads")).rstrip("/")

    def save(self, upload, logical_path: str) -> tuple[str, str]:
        """
        Persist a werkzeug FileStorage.

        Returns:
            (original filename, URL reference)
        """
        original = upload.filename or ""
        filename = secure_filename(original)
        if not filename:
            raise ValidationError("A file name is required", details={"file": "missing filename"})
        ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
        if ext not in ALLOWED_EXTENSIONS:
            raise ValidationError(
                f"File type '.{ext}' is not allowed",
                details={"file": f"allowed: {sorted(ALLOWED_EXTENSIONS)}"},
            )

        stored = f"{uuid.uuid4().hex[:12]}_{filename}"
        folder = os.path.join(self.root, logical_path)
        os.makedirs(folder, exist_ok=True)
        upload.save(os.path.join(folder, stored))
        logger.info("Stored upload %s under %s", stored, logical_path)
        return original, f"{self.url_prefix}/{logical_path}/{stored}"
