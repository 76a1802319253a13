"""
Result frames for docbridge reads.

Turns a list of find() results into a pyarrow Table, and from there into a
pandas or polars DataFrame.

DATA FLOW
=========

STEP 1: COLLECT COLUMNS
-----------------------
Columns are the union of top-level keys across all documents, in first-seen
order. A document missing a key contributes null.

STEP 2: TYPE COLUMNS
--------------------
Declared schema types are converted with BaseType.to_arrow() and each value is
coerced with BaseType.to_arrow_value():

    Schema({"score": Float(), "tags": List(String())})
    -> score: double, tags: list<string>

Undeclared columns are inferred by pyarrow. When inference fails on mixed
values (e.g. [1, "a", {"x": 2}]) the column is carried as Types.Any, i.e. JSON
text.

STEP 3: CONVERT
---------------
    pandas: table.to_pandas()
    polars: pl.from_arrow(table)
"""

import logging
from typing import Any, Dict, List, Literal, Optional, Union

import pandas as pd
import polars as pl
import pyarrow as pa

from docbridge.schema import Schema
from docbridge.schema.types import Any as AnyType

logger = logging.getLogger(__name__)

Documents = List[Dict[str, Any]]


def _columns(documents: Documents) -> List[str]:
    seen: Dict[str, None] = {}
    for doc in documents:
        for key in doc:
            seen.setdefault(key, None)
    return list(seen)


def _column_array(name: str, values: List[Any], schema: Optional[Schema]) -> pa.Array:
    declared = schema.field_type(name) if schema is not None else None
    if declared is not None and schema.has_field(name):
        return pa.array(
            [declared.to_arrow_value(v) for v in values], type=declared.to_arrow()
        )
    try:
        return pa.array(values)
    except (pa.ArrowInvalid, pa.ArrowTypeError) as e:
        logger.debug(f"Column '{name}' has mixed values ({e}); carrying as JSON text")
        fallback = AnyType()
        return pa.array(
            [fallback.to_arrow_value(v) for v in values], type=fallback.to_arrow()
        )


def to_arrow_table(documents: Documents, schema: Optional[Schema] = None) -> pa.Table:
    """
    Build a pyarrow Table from result documents.

    Args:
        documents: Contents returned by find()
        schema: Declared field types; undeclared columns are inferred

    Returns:
        pyarrow.Table with one column per top-level key
    """
    columns = _columns(documents)
    arrays = [
        _column_array(name, [doc.get(name) for doc in documents], schema)
        for name in columns
    ]
    return pa.Table.from_arrays(arrays, names=columns)


def to_dataframe(
    documents: Documents,
    schema: Optional[Schema] = None,
    engine: Literal["pandas", "polars"] = "pandas",
) -> Union[pd.DataFrame, pl.DataFrame]:
    """
    Build a DataFrame from result documents.

    Args:
        documents: Contents returned by find()
        schema: Declared field types
        engine: "pandas" or "polars"

    Returns:
        pandas.DataFrame or polars.DataFrame

    Example:
        >>> df = to_dataframe([{"name": "ann", "score": 5}], engine="polars")
        >>> df.columns
        ['name', 'score']
    """
    if engine not in ("pandas", "polars"):
        raise ValueError(f"Unknown frame engine: {engine!r} (expected 'pandas' or 'polars')")

    table = to_arrow_table(documents, schema)
    if engine == "pandas":
        return table.to_pandas()
    return pl.from_arrow(table)
