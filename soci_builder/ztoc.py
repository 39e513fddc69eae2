"""
Layer table-of-contents (ztoc) generation.

A ztoc records where every file of a layer lives in the layer's uncompressed
tar stream, so a lazy loader can fetch single files by byte range.
"""

import json
import logging
import tarfile
import zlib

from .errors import ZtocError
from .models import Descriptor

logger = logging.getLogger(__name__)

ZTOC_VERSION = "0.9"

GZIP_MAGIC = b"\x1f\x8b"
ZSTD_MAGIC = b"\x28\xb5\x2f\xfd"

_MEMBER_TYPES = {
    tarfile.REGTYPE: "reg",
    tarfile.AREGTYPE: "reg",
    tarfile.CONTTYPE: "reg",
    tarfile.DIRTYPE: "dir",
    tarfile.SYMTYPE: "symlink",
    tarfile.LNKTYPE: "hardlink",
    tarfile.CHRTYPE: "char",
    tarfile.BLKTYPE: "block",
    tarfile.FIFOTYPE: "fifo",
}


def detect_compression(fileobj) -> str:
    """Sniff the compression of a layer blob from its magic bytes."""
    head = fileobj.read(4)
    fileobj.seek(0)
    if head.startswith(GZIP_MAGIC):
        return "gzip"
    if head.startswith(ZSTD_MAGIC):
        return "zstd"
    return "uncompressed"


def build_ztoc(fileobj, layer: Descriptor, build_tool: str) -> bytes:
    """
    Build the ztoc of one layer.

    Args:
        fileobj: Seekable binary file holding the layer blob
        layer: Descriptor of the layer
        build_tool: Identifier recorded in the ztoc

    Returns:
        Serialized ztoc (JSON, UTF-8)

    Raises:
        ZtocError: if the layer compression is unsupported or the blob is not a tar archive

    Format:
        {
            "version": "0.9",
            "buildToolIdentifier": str,
            "compressionAlgorithm": "gzip" | "uncompressed",
            "compressedArchiveSize": int,
            "uncompressedArchiveSize": int,
            "toc": [
                {"name", "type", "offset", "size", "mode", "uid", "gid",
                 "uname", "gname", "mtime", "linkname"},
                ...
            ]
        }
    """
    compression = detect_compression(fileobj)
    if compression == "zstd":
        raise ZtocError(f"Layer {layer.digest}: zstd compressed layers are not supported")

    mode = "r|gz" if compression == "gzip" else "r|"
    toc = []
    try:
        with tarfile.open(fileobj=fileobj, mode=mode) as tar:
            for member in tar:
                toc.append({
                    "name": member.name,
                    "type": _MEMBER_TYPES.get(member.type, "reg"),
                    "offset": member.offset_data,
                    "size": member.size,
                    "mode": member.mode,
                    "uid": member.uid,
                    "gid": member.gid,
                    "uname": member.uname,
                    "gname": member.gname,
                    "mtime": int(member.mtime),
                    "linkname": member.linkname,
                })
            uncompressed_size = tar.offset
    except (tarfile.TarError, EOFError, OSError, zlib.error) as e:
        raise ZtocError(f"Layer {layer.digest} is not a readable tar archive: {e}") from e

    if not toc:
        raise ZtocError(f"Layer {layer.digest} contains no files")

    logger.debug(f"Layer {layer.digest}: {len(toc)} entries, {uncompressed_size} uncompressed bytes")
    ztoc = {
        "version": ZTOC_VERSION,
        "buildToolIdentifier": build_tool,
        "compressionAlgorithm": compression,
        "compressedArchiveSize": layer.size,
        "uncompressedArchiveSize": uncompressed_size,
        "toc": toc,
    }
    return json.dumps(ztoc, sort_keys=True).encode("utf-8")
