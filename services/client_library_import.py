import logging
from typing import List

from services.exceptions import DataProcessingError, ImportValidationError
from services.functions_client import FunctionsClient


logger = logging.getLogger(__name__)

FUNCTION_NAME = "import-client-library"
CHUNK_ROWS = 200
SINGLE_CALL_MAX_ROWS = 100


def split_csv_for_upload(csv_text: str, chunk_rows: int = CHUNK_ROWS,
                         single_call_max_rows: int = SINGLE_CALL_MAX_ROWS) -> List[str]:
    """
    Break a CSV into upload-sized pieces.

    Small files stay whole. Larger ones are cut into ``chunk_rows`` data rows per
    piece, and only the first piece carries the header line since the pieces are
    appended to one file on the other side.
    """
    lines = [line for line in (csv_text or "").splitlines() if line.strip()]
    if len(lines) < 2:
        raise ImportValidationError("CSV must have a header row and at least one data row.")

    header, data = lines[0], lines[1:]
    if len(data) <= single_call_max_rows:
        return ["\n".join(lines)]

    chunks = []
    for start in range(0, len(data), chunk_rows):
        piece = data[start:start + chunk_rows]
        if start == 0:
            piece = [header] + piece
        chunks.append("\n".join(piece))
    return chunks


def _call(client: FunctionsClient, body: dict):
    result = client.invoke(FUNCTION_NAME, body)
    if not result.ok:
        raise DataProcessingError(result.error)
    return result.data or {}


def import_client_library(client: FunctionsClient, csv_text: str, fmt: str, user_id: str = None,
                          chunk_rows: int = CHUNK_ROWS, single_call_max_rows: int = SINGLE_CALL_MAX_ROWS,
                          progress=None) -> dict:
    """
    Send a client-library CSV to the import function.

    Returns the function's summary (created, updated, skipped, errors, ...).
    """
    if not fmt:
        raise ImportValidationError("An import format is required.")

    chunks = split_csv_for_upload(csv_text, chunk_rows, single_call_max_rows)
    base = {"format": fmt}
    if user_id:
        base["user_id"] = user_id

    if len(chunks) == 1:
        logger.info(f"Importing {fmt} client library in a single call")
        return _call(client, {**base, "action": "import", "csv_data": chunks[0]})

    for i, chunk in enumerate(chunks):
        _call(client, {**base, "action": "upload", "csv_data": chunk, "append": i > 0})
        if progress:
            progress(f"Uploaded part {i + 1} of {len(chunks)}", int((i + 1) / (len(chunks) + 1) * 100))

    logger.info(f"Uploaded {len(chunks)} parts for {fmt}; starting import")
    summary = _call(client, {**base, "action": "import"})
    if progress:
        progress("Import finished", 100)
    return summary
