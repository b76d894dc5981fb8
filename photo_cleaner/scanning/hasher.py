import io
import hashlib
import logging
from typing import Optional

import imagehash
import pillow_heif
from PIL import Image, UnidentifiedImageError

from .. import config
from ..exceptions import AssetReadError
from ..library.source import AssetSource
from ..models import AssetSignature

pillow_heif.register_heif_opener()


class SignatureComputer:
    """
    Derives the expensive per-asset signature from the resource bytes.

    Strategy:
    1. Stream the primary resource through SHA-256, counting bytes.
    2. Decode the same bytes with PIL and take a pHash. Images PIL cannot
       decode keep their exact hash and get no perceptual signature.
    """

    def __init__(self, hash_size: int = config.PHASH_SIZE):
        self.hash_size = hash_size

    def compute(self, source: AssetSource, asset_id: str) -> AssetSignature:
        h = hashlib.sha256()
        buffer = io.BytesIO()
        try:
            for chunk in source.read_resource_bytes(asset_id):
                h.update(chunk)
                buffer.write(chunk)
        except OSError as e:
            raise AssetReadError(asset_id, str(e)) from e

        byte_count = buffer.tell()
        if byte_count == 0:
            raise AssetReadError(asset_id, "resource is empty")

        buffer.seek(0)
        return AssetSignature(
            exact_hash=h.hexdigest(),
            perceptual_signature=self._perceptual_hash(asset_id, buffer),
            measured_byte_count=byte_count,
        )

    def _perceptual_hash(self, asset_id: str, data: io.BytesIO) -> Optional[str]:
        try:
            with Image.open(data) as img:
                # JPEG decoders can downscale while decoding; pHash only needs 32x32
                img.draft('RGB', config.PHASH_DRAFT_SIZE)
                return str(imagehash.phash(img, hash_size=self.hash_size))
        except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as e:
            logging.debug(f"No perceptual signature for {asset_id}: {e}")
            return None
