from __future__ import annotations

"""Parquet-backed store for attempt history using pandas + pyarrow.

Unit of data: (attempt × category) summary rows, written after each
Test-mode session ends.
"""

import logging
from pathlib import Path
from typing import Callable, Optional

import pandas as pd

from assessor.results.schema import AttemptResult, format_datetime
from assessor.stats.stats import category_breakdown as _count_categories

from .schema import DEFAULT_CATEGORY, DTYPES, AttemptCategoryRow

logger = logging.getLogger(__name__)

DATA_FILE = "attempt_category_stats.parquet"


def _empty_df() -> pd.DataFrame:
    return pd.DataFrame({k: pd.Series(dtype=v) for k, v in DTYPES.items()})


def init_store(data_dir: Path) -> None:
    """Ensure the data directory and an empty Parquet file with the right schema exist."""
    data_dir = Path(data_dir)
    data_dir.mkdir(parents=True, exist_ok=True)
    stats_path = data_dir / DATA_FILE
    if not stats_path.exists():
        _empty_df().to_parquet(stats_path, engine="pyarrow", compression="zstd")


def attempt_key(result: AttemptResult) -> str:
    return f"{result.username}:{result.test_id}:{result.attempt_number}:{format_datetime(result.completed_at)}"


def rows_from_result(result: AttemptResult) -> list[AttemptCategoryRow]:
    """Split one attempt into per-category rows.

    Without an answer breakdown the whole attempt becomes a single
    "general" row.
    """
    common = dict(
        attempt_key=attempt_key(result),
        username=result.username,
        test_id=result.test_id,
        completed_at=result.completed_at,
        attempt_number=result.attempt_number,
        score=result.score,
        passed=result.passed,
        T_s=result.time_taken_seconds,
    )
    if not result.answers_detail:
        if result.total_questions < 1:
            return []
        return [
            AttemptCategoryRow(
                category=DEFAULT_CATEGORY,
                Q=result.total_questions,
                C=result.correct_count,
                **common,
            )
        ]
    per = _count_categories(result.answers_detail)
    return [
        AttemptCategoryRow(category=cat, Q=counts["asked"], C=counts["correct"], **common)
        for cat, counts in sorted(per.items())
    ]


def validate_records(records: list[AttemptCategoryRow]) -> pd.DataFrame:
    """Validate a list of AttemptCategoryRow and return a DataFrame with proper dtypes."""
    if not isinstance(records, list):
        raise TypeError("records must be a list[AttemptCategoryRow]")
    rows = [AttemptCategoryRow.model_validate(r) if not isinstance(r, AttemptCategoryRow) else r for r in records]
    if not rows:
        return _empty_df()
    df = pd.DataFrame([r.model_dump() for r in rows])
    return _fix_dtypes(df)


def _fix_dtypes(df: pd.DataFrame) -> pd.DataFrame:
    for col, dt in DTYPES.items():
        if col not in df.columns:
            df[col] = pd.NA
        df[col] = df[col].astype(dt)
    return df[list(DTYPES.keys())]


def append_attempt_rows(df_new: pd.DataFrame, data_path: Path) -> None:
    """Append validated rows; re-recording the same attempt replaces its rows."""
    f = Path(data_path) / DATA_FILE
    if f.exists():
        df_old = _fix_dtypes(pd.read_parquet(f, engine="pyarrow"))
        keys = set(df_new["attempt_key"].astype("string"))
        df_old = df_old[~df_old["attempt_key"].isin(keys)]
    else:
        df_old = _empty_df()
    df_new = _fix_dtypes(df_new.copy())
    frames = [d for d in (df_old, df_new) if not d.empty]
    combined = pd.concat(frames, ignore_index=True) if frames else _empty_df()
    combined = _fix_dtypes(combined)
    combined.to_parquet(f, engine="pyarrow", compression="zstd", index=False)


def record_attempt(result: AttemptResult, data_path: Path) -> int:
    """Validate and append the rows for one attempt. Returns the row count."""
    rows = rows_from_result(result)
    if not rows:
        return 0
    init_store(Path(data_path))
    append_attempt_rows(validate_records(rows), data_path)
    return len(rows)


def history_sink(data_path: Path) -> Callable[[AttemptResult], None]:
    """Callable suitable as a session's history sink."""

    def sink(result: AttemptResult) -> None:
        n = record_attempt(result, data_path)
        logger.debug("recorded %d history rows for %s", n, result.test_id)

    return sink


def load_all(data_path: Path) -> pd.DataFrame:
    """Load the full attempt history, ensuring dtypes, and compute convenience columns.

    Adds:
    - acc: float32 = C / Q
    """
    f = Path(data_path) / DATA_FILE
    if not f.exists():
        return _empty_df().assign(acc=pd.Series(dtype="float32"))
    df = _fix_dtypes(pd.read_parquet(f, engine="pyarrow"))
    # Avoid division warnings; compute as float32
    q = df["Q"].astype("float32").where(df["Q"] > 0, other=1.0)
    df["acc"] = (df["C"].astype("float32") / q).astype("float32")
    return df


def query_trend(df: pd.DataFrame, *, test_id: str, category: Optional[str] = None) -> pd.DataFrame:
    """Rows of one test (optionally one category), oldest attempt first."""
    mask = df["test_id"].astype("string") == test_id
    if category is not None:
        mask &= df["category"].astype("string") == category
    return df[mask.fillna(False)].sort_values("completed_at").reset_index(drop=True)


def category_breakdown(df: pd.DataFrame, *, test_id: Optional[str] = None) -> pd.DataFrame:
    """Per-category totals: attempts, Q, C and acc, sorted by category."""
    if test_id is not None:
        df = df[(df["test_id"].astype("string") == test_id).fillna(False)]
    if df.empty:
        return pd.DataFrame(
            {
                "category": pd.Series(dtype="string"),
                "attempts": pd.Series(dtype="int64"),
                "Q": pd.Series(dtype="int64"),
                "C": pd.Series(dtype="int64"),
                "acc": pd.Series(dtype="float32"),
            }
        )
    grouped = (
        df.assign(Q=df["Q"].astype("int64"), C=df["C"].astype("int64"))
        .groupby("category")
        .agg(attempts=("attempt_key", "nunique"), Q=("Q", "sum"), C=("C", "sum"))
        .reset_index()
    )
    grouped["acc"] = (grouped["C"] / grouped["Q"].where(grouped["Q"] > 0, 1)).astype("float32")
    return grouped.sort_values("category").reset_index(drop=True)


def export_ndjson(df: pd.DataFrame, out_path: Path) -> None:
    """Export a DataFrame to line-delimited JSON (NDJSON) for quick inspection."""
    Path(out_path).parent.mkdir(parents=True, exist_ok=True)
    df.to_json(out_path, orient="records", lines=True, date_format="iso")

