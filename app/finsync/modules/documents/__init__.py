"""
Document Registry and Version Store.

- One live document per document type; re-uploads append versions
- Versions are immutable; numbers are dense and start at 1
- Spreadsheet previews are decoded on demand from the stored blob
"""
