from typing import Optional

from heictojpeg.heif import EXIF_TYPE, HeifFormatError, ImageHandle

EXIF_HEADER = b"Exif\x00\x00"


def extract_exif(handle: ImageHandle) -> Optional[bytes]:
    """
    Return the EXIF payload of an image, or None when it has none.

    Only the first Exif block in item order is used. HEIF prefixes the block
    with a 4-byte offset to the TIFF header; that prefix is dropped, and so is
    an `Exif\\0\\0` identifier some writers put between the prefix and the TIFF
    header. EXIF is best-effort: a block that cannot be read counts as absent.
    """
    block_ids = handle.metadata_block_ids(EXIF_TYPE)
    if not block_ids:
        return None
    try:
        payload = handle.metadata(block_ids[0])
    except HeifFormatError:
        return None
    if len(payload) <= 4:
        return payload
    payload = payload[4:]
    if payload.startswith(EXIF_HEADER):
        payload = payload[len(EXIF_HEADER):]
    return payload
