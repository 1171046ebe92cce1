"""
Construction of ranked gene lists for rank-based enrichment testing.
"""

import logging
from typing import Optional

import numpy as np
import polars as pl

from .models import RankedList, RankedLists

logger = logging.getLogger(__name__)

# p-values of exactly 0 are underflow; clamp to the smallest positive (subnormal) double
MIN_SIGNIFICANCE = float(np.nextafter(0.0, 1.0))
MAX_SIGNIFICANCE_SCORE = float(-np.log10(MIN_SIGNIFICANCE))


def significance_score(p_value: float) -> float:
    """Return ``-log10(p)`` with p = 0 clamped to a large finite score."""
    return float(-np.log10(max(p_value, MIN_SIGNIFICANCE)))


def preselect_genes(records: pl.DataFrame, max_genes: Optional[int], mode: str = 'effect') -> pl.DataFrame:
    """
    Keep only the ``max_genes`` strongest records.

    Runs before identifier mapping, so it decides which genes are eligible for
    every downstream category.

    Args:
        records: Gene record frame
        max_genes: Number of records to keep; None or 0 keeps everything
        mode: ``effect`` keeps the largest |effect size|, ``significance`` the
              smallest p-values

    Returns:
        Truncated gene record frame
    """
    if not max_genes or records.height <= max_genes:
        return records

    if mode == 'effect':
        ordered = records.sort(pl.col('effect_size').abs(), descending=True, nulls_last=True, maintain_order=True)
    elif mode == 'significance':
        ordered = records.sort('significance', descending=False, nulls_last=True, maintain_order=True)
    else:
        raise ValueError(f"Unknown ranking mode: {mode}")

    logger.info(f"Keeping the top {max_genes} of {records.height} genes by {mode}")
    return ordered.head(max_genes)


def _ranked(frame: pl.DataFrame, direction: str) -> RankedList:
    return RankedList(
        direction=direction,
        entries=tuple(zip(frame['canonical_id'].to_list(), frame['score'].to_list())),
    )


def build_ranked_lists(records: pl.DataFrame, mode: str = 'effect') -> RankedLists:
    """
    Build the All/Up/Down ranked lists from mapped gene records.

    Records sharing a canonical id are merged first by averaging. With
    ``mode='significance'`` each record scores ``-log10(p)`` carrying the sign of
    its effect size, so magnitude ranks genes within a direction while the sign
    still decides membership of the Up/Down lists.

    Args:
        records: Gene record frame with canonical_id filled in
        mode: ``effect`` or ``significance``

    Returns:
        RankedLists with every list sorted by score, descending
    """
    if mode not in ('effect', 'significance'):
        raise ValueError(f"Unknown ranking mode: {mode}")

    required = ['canonical_id', 'effect_size']
    if mode == 'significance':
        required.append('significance')

    usable = records.drop_nulls(required).filter(~pl.col('effect_size').is_nan())
    if mode == 'significance':
        usable = usable.filter(~pl.col('significance').is_nan())

    if usable.height < records.height:
        logger.info(f"Skipped {records.height - usable.height} records with missing {mode} values")

    if mode == 'effect':
        merged = usable.group_by('canonical_id').agg(
            pl.col('effect_size').mean().alias('effect'),
        ).with_columns(pl.col('effect').alias('score'))
    else:
        merged = usable.with_columns(
            (-pl.col('significance').clip(lower_bound=MIN_SIGNIFICANCE).log10()).alias('raw_score')
        ).group_by('canonical_id').agg(
            pl.col('effect_size').mean().alias('effect'),
            pl.col('raw_score').mean().alias('raw_score'),
        ).with_columns(
            (pl.col('effect').sign() * pl.col('raw_score')).alias('score')
        )

    ranked = merged.sort(['score', 'canonical_id'], descending=[True, False])

    lists = RankedLists(
        all=_ranked(ranked, 'all'),
        up=_ranked(ranked.filter(pl.col('effect') > 0), 'up'),
        down=_ranked(ranked.filter(pl.col('effect') < 0), 'down'),
        effect_sizes=dict(zip(ranked['canonical_id'].to_list(), ranked['effect'].to_list())),
    )
    logger.info(
        f"Ranked {len(lists.all)} genes by {mode}: "
        f"{len(lists.up)} up, {len(lists.down)} down"
    )
    return lists
