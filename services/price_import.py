"""
Bulk price import from CSV or Excel.

Each valid row goes through the same ingestor as a webhook, so buy orders
are matched exactly as they would be for a live price change.
"""
import logging
from typing import Any, Dict, List

import pandas as pd

from core.exceptions import CollaboratorUnavailableError, InputError
from orchestrator.price_change import PriceChangeIngestor
from validator.price_events import validate_price_updates_df

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ["ProductId", "NewPrice"]
ALLOWED_EXTENSIONS = {"xlsx", "xls", "csv"}


class PriceSheetError(InputError):
    """Raised when a price sheet cannot be read or is missing columns."""
    pass


def allowed_file(filename: str) -> bool:
    return "." in filename and filename.rsplit(".", 1)[1].lower() in ALLOWED_EXTENSIONS


def read_price_sheet(source, filename: str) -> pd.DataFrame:
    """
    Load a price sheet. ``source`` may be a path or a file-like object;
    ``filename`` decides between CSV and Excel.
    """
    if not allowed_file(filename):
        raise PriceSheetError("Invalid file type. Upload Excel (.xlsx, .xls) or CSV.")
    try:
        if filename.lower().endswith(".csv"):
            df = pd.read_csv(source, dtype={"ProductId": str})
        else:
            df = pd.read_excel(source, dtype={"ProductId": str})
    except (ValueError, OSError) as e:
        raise PriceSheetError(f"Could not read {filename}: {e}") from e

    df.columns = [str(c).strip() for c in df.columns]
    missing_columns = [col for col in REQUIRED_COLUMNS if col not in df.columns]
    if missing_columns:
        raise PriceSheetError(f"Missing required columns: {', '.join(missing_columns)}")
    return df


def import_prices(df: pd.DataFrame, ingestor: PriceChangeIngestor) -> Dict[str, Any]:
    """
    Validate and ingest every row of a price sheet.

    Returns:
        {"results": [...], "success_count": int, "failed_count": int}
        Row numbers in results are 1-based spreadsheet data rows.
    """
    events, errors = validate_price_updates_df(df)
    results: List[Dict[str, Any]] = []

    for idx, message in errors:
        results.append({"row": int(idx) + 1, "status": "failed", "error": message})

    for idx, event in events:
        try:
            outcome = ingestor.ingest(event)
        except (InputError, CollaboratorUnavailableError) as e:
            logger.warning(f"Price import row {int(idx) + 1} ({event.product_id}) failed: {e}")
            results.append({"row": int(idx) + 1, "productId": event.product_id, "status": "failed", "error": str(e)})
            continue
        results.append({
            "row": int(idx) + 1,
            "productId": outcome.product_id,
            "status": "success",
            "oldPrice": None if outcome.old_price is None else str(outcome.old_price),
            "newPrice": str(outcome.new_price),
            "fulfilled": outcome.report.fulfilled_count,
            "failed": outcome.report.failed_count,
        })

    results.sort(key=lambda r: r["row"])
    success_count = sum(1 for r in results if r["status"] == "success")
    failed_count = len(results) - success_count
    logger.info(f"Price import finished: {success_count} succeeded, {failed_count} failed")
    return {"results": results, "success_count": success_count, "failed_count": failed_count}
