from __future__ import annotations

import secrets
import time
import uuid

from intake.utils.image_formats import extension_of


def generate_id(prefix: str) -> str:
    ts = int(time.time() * 1000)
    rand = secrets.token_hex(3)
    return f"{prefix}-{ts}-{rand}".upper()


def generate_upload_filename(original_filename: str) -> str:
    """Unguessable, collision-resistant name: ``<uuid4>_<unix seconds><ext>``."""
    return f"{uuid.uuid4()}_{int(time.time())}{extension_of(original_filename)}"
