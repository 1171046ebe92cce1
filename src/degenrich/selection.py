"""Selection of enriched terms for display."""

import math
from dataclasses import dataclass
from typing import Iterable, Tuple

import polars as pl

from .models import EnrichmentResult, format_term_label


@dataclass(frozen=True)
class Selection:
    """Terms chosen for display, in plotting order (weakest first).

    ``display_scores`` holds the score to plot for each entry of ``results``;
    for the down-regulated list it is the negated NES. The result records
    themselves always keep their original sign.
    """

    direction: str
    results: Tuple[EnrichmentResult, ...] = ()
    display_scores: Tuple[float, ...] = ()

    def __len__(self) -> int:
        return len(self.results)

    @property
    def is_empty(self) -> bool:
        return not self.results

    def strongest_first(self) -> Tuple[EnrichmentResult, ...]:
        return tuple(reversed(self.results))

    def to_frame(self) -> pl.DataFrame:
        """Return the selection as a plotting table."""
        return pl.DataFrame(
            {
                'term_id': [r.term_id for r in self.results],
                'label': [format_term_label(r) for r in self.results],
                'normalized_score': [r.normalized_score for r in self.results],
                'display_score': list(self.display_scores),
                'adjusted_p_value': [r.adjusted_p_value for r in self.results],
                'gene_ratio': [r.gene_ratio for r in self.results],
                'core_size': [len(r.member_genes) for r in self.results],
            },
            schema={
                'term_id': pl.Utf8,
                'label': pl.Utf8,
                'normalized_score': pl.Float64,
                'display_score': pl.Float64,
                'adjusted_p_value': pl.Float64,
                'gene_ratio': pl.Float64,
                'core_size': pl.Int64,
            },
        )


def display_score(result: EnrichmentResult, direction: str) -> float:
    """Return the score to plot for a result from a given list direction."""
    if direction == 'down':
        return -result.normalized_score
    return result.normalized_score


def select_results(
    results: Iterable[EnrichmentResult],
    cutoff: float = 0.05,
    max_count: int = 20,
    direction: str = 'all',
) -> Selection:
    """
    Filter, rank and truncate enrichment results for display.

    Args:
        results: Enriched terms from one (category, direction) combination
        cutoff: Keep terms with adjusted p-value at or below this value
        max_count: Maximum number of terms kept
        direction: Direction of the ranked list the results came from

    Returns:
        Selection sorted ascending by display score, so the strongest term is
        drawn at the top of a horizontal bar chart. Empty when nothing passes.
    """
    passing = [
        r for r in results
        if r.adjusted_p_value <= cutoff and not math.isnan(r.normalized_score)
    ]
    if not passing:
        return Selection(direction=direction)

    strongest = sorted(passing, key=lambda r: (-display_score(r, direction), r.term_id))
    kept = strongest[:max_count] if max_count else strongest
    kept.reverse()

    return Selection(
        direction=direction,
        results=tuple(kept),
        display_scores=tuple(display_score(r, direction) for r in kept),
    )
