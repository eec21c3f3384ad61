from .schema import DEFAULT_CATEGORY, DTYPES, AttemptCategoryRow
from .store import (
    init_store,
    rows_from_result,
    validate_records,
    append_attempt_rows,
    record_attempt,
    history_sink,
    load_all,
    query_trend,
    category_breakdown,
    export_ndjson,
)

__all__ = [
    "DEFAULT_CATEGORY",
    "DTYPES",
    "AttemptCategoryRow",
    "init_store",
    "rows_from_result",
    "validate_records",
    "append_attempt_rows",
    "record_attempt",
    "history_sink",
    "load_all",
    "query_trend",
    "category_breakdown",
    "export_ndjson",
]
