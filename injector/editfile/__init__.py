"""
Edit config documents without disturbing their formatting.

Editor (editor.py):
    - EditConfigFile: Add public keys and encrypted secrets, list names, sort
    - sort_blocks: Canonical block order for a parsed document
    - write_atomic: Replace a file through a temporary sibling

Exports (exports.py):
    - Exports: Read and edit the exports object of one context
    - ExportRecord/ExportRecordList: Line-level view of an exports object
"""

from injector.editfile.editor import (
    EditConfigFile,
    sort_blocks,
    valid_pubkey_name,
    wrap_base64,
    write_atomic,
)
from injector.editfile.exports import (
    ExportRecord,
    ExportRecordList,
    Exports,
    parse_exports,
    valid_export_name,
)

__all__ = [
    "EditConfigFile",
    "sort_blocks",
    "valid_pubkey_name",
    "wrap_base64",
    "write_atomic",
    "Exports",
    "ExportRecord",
    "ExportRecordList",
    "parse_exports",
    "valid_export_name",
]
