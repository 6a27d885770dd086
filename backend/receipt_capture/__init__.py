"""Top-level package for the receipt capture pipeline.

This package contains everything required to turn a photograph of a
paper receipt into a persisted, structured record: camera and file
capture, the client for the remote recognition service, the ingestion
coordinator that drives the capture -> analyze -> persist flow, and the
storage layers (object storage for the image, relational tables for the
receipt header and its line items).

To run the API locally you can execute:

```bash
uvicorn receipt_capture.api.main:app --reload
```

or drive the pipeline from a terminal with
``python -m receipt_capture.cli scan path/to/receipt.jpg --owner <id>``.
"""

__all__: list[str] = []  # explicit for linters; populated dynamically elsewhere if needed
