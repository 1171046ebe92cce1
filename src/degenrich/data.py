"""
Loading of differential expression tables and pathway lists.
"""

import logging
from pathlib import Path
from typing import List, Optional, Union

import openpyxl
import polars as pl

from .errors import MalformedDataError, MissingResourceError
from .models import GENE_RECORD_SCHEMA

logger = logging.getLogger(__name__)

WORKBOOK_SUFFIXES = ('.xlsx', '.xlsm')
DELIMITERS = {'.csv': ',', '.tsv': '\t', '.txt': '\t'}

# Spreadsheets exported from R carry these strings for missing values
NULL_VALUES = ['NA', 'NaN', 'nan', '', 'null']


def list_sheets(file_path: Path) -> List[str]:
    """Return the sheet names of a workbook."""
    workbook = openpyxl.load_workbook(file_path, read_only=True)
    try:
        return list(workbook.sheetnames)
    finally:
        workbook.close()


def read_table(file_path: Union[str, Path], sheet: Optional[str] = None) -> pl.DataFrame:
    """
    Read one sheet of a workbook, or a delimited text table.

    Args:
        file_path: Path to a ``.xlsx`` workbook or a ``.csv``/``.tsv`` file
        sheet: Sheet name, required for workbooks and ignored otherwise

    Returns:
        DataFrame with the sheet contents

    Raises:
        MissingResourceError: If the file or the sheet does not exist
    """
    file_path = Path(file_path)
    if not file_path.is_file():
        raise MissingResourceError(f"Input file not found: {file_path}")

    suffix = file_path.suffix.lower()
    if suffix in WORKBOOK_SUFFIXES:
        if sheet is None:
            raise MissingResourceError(f"No sheet given for workbook {file_path}")
        sheets = list_sheets(file_path)
        if sheet not in sheets:
            raise MissingResourceError(
                f"Sheet '{sheet}' not found in {file_path.name}. "
                f"Available sheets: {', '.join(sheets)}"
            )
        return pl.read_excel(file_path, sheet_name=sheet, engine='openpyxl')

    return pl.read_csv(
        file_path,
        separator=DELIMITERS.get(suffix, '\t'),
        has_header=True,
        null_values=NULL_VALUES,
        infer_schema_length=None,
    )


def _to_float(df: pl.DataFrame, column: str, alias: str) -> pl.Expr:
    """Build a strict Float64 cast of ``column``, treating NA strings as null."""
    expr = pl.col(column)
    if df.schema[column] == pl.Utf8:
        expr = pl.when(expr.str.strip_chars().is_in(NULL_VALUES)).then(None).otherwise(expr)
    return expr.cast(pl.Float64, strict=True).alias(alias)


def load_gene_table(
    file_path: Union[str, Path],
    sheet: Optional[str] = None,
    id_column: str = 'gene_id',
    effect_column: str = 'log2FoldChange',
    significance_column: str = 'padj',
) -> pl.DataFrame:
    """
    Load per-gene statistics into gene record form.

    Args:
        file_path: Path to the differential expression workbook or table
        sheet: Sheet holding the per-gene table
        id_column: Column with the source gene identifiers
        effect_column: Column with the effect size (log fold change)
        significance_column: Column with the (adjusted) p-value

    Returns:
        DataFrame with gene_id, effect_size, significance and a null canonical_id

    Raises:
        MissingResourceError: If the file or sheet does not exist
        MalformedDataError: If a required column is missing or unparsable
    """
    df = read_table(file_path, sheet)

    required = [id_column, effect_column, significance_column]
    missing = [col for col in required if col not in df.columns]
    if missing:
        raise MalformedDataError(
            f"Missing required columns in {Path(file_path).name}: {', '.join(missing)}"
        )

    try:
        records = df.select(
            pl.col(id_column).cast(pl.Utf8).str.strip_chars().alias('gene_id'),
            _to_float(df, effect_column, 'effect_size'),
            _to_float(df, significance_column, 'significance'),
        )
    except pl.exceptions.PolarsError as e:
        raise MalformedDataError(f"Unparsable values in {Path(file_path).name}: {e}") from e

    n_rows = records.height
    records = records.filter(
        pl.col('gene_id').is_not_null() & (pl.col('gene_id') != '')
    ).with_columns(pl.lit(None, dtype=pl.Utf8).alias('canonical_id'))

    if records.height < n_rows:
        logger.info(f"Dropped {n_rows - records.height} rows without a gene identifier")
    logger.info(f"Loaded {records.height} genes from {Path(file_path).name}")

    return records.select(list(GENE_RECORD_SCHEMA))


def load_pathway_list(
    file_path: Union[str, Path],
    sheet: Optional[str] = None,
    column: Optional[str] = None,
) -> List[str]:
    """
    Load a pre-computed list of pathway names or ids.

    Args:
        file_path: Path to the workbook or table
        sheet: Sheet holding the pathway list
        column: Column with the pathway names; defaults to the first column

    Returns:
        Pathway names in sheet order, without blanks or duplicates
    """
    df = read_table(file_path, sheet)
    if df.width == 0:
        return []

    column = column or df.columns[0]
    if column not in df.columns:
        raise MalformedDataError(f"Missing pathway column '{column}' in {Path(file_path).name}")

    names = []
    for value in df[column].cast(pl.Utf8).to_list():
        if value is None:
            continue
        value = value.strip()
        if value and value not in names:
            names.append(value)
    return names
