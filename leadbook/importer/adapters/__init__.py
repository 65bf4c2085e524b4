"""Importer adapters for decoding uploaded files."""

from .file_decoder import decode_upload, detect_upload_kind, iter_upload_rows

__all__ = ["decode_upload", "detect_upload_kind", "iter_upload_rows"]
