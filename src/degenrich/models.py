"""
Data structures passed between the pipeline stages.

Gene records travel as polars DataFrames following ``GENE_RECORD_SCHEMA``;
everything downstream of the ranking stage is an immutable dataclass.
"""

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterator, Mapping, Optional, Tuple

import polars as pl

# Column layout of a gene record frame. ``canonical_id`` stays null until
# the identifier mapper fills it in.
GENE_RECORD_SCHEMA = {
    'gene_id': pl.Utf8,
    'effect_size': pl.Float64,
    'significance': pl.Float64,
    'canonical_id': pl.Utf8,
}

DIRECTIONS = ('all', 'up', 'down')
CATEGORY_KINDS = ('ontology', 'pathway', 'disease')


@dataclass(frozen=True)
class RankedList:
    """Ordered (canonical id, score) pairs, highest score first."""

    direction: str
    entries: Tuple[Tuple[str, float], ...] = ()

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[Tuple[str, float]]:
        return iter(self.entries)

    @property
    def ids(self) -> Tuple[str, ...]:
        return tuple(gene for gene, _ in self.entries)

    @property
    def scores(self) -> Tuple[float, ...]:
        return tuple(score for _, score in self.entries)

    def as_dict(self) -> Dict[str, float]:
        return dict(self.entries)

    def to_frame(self) -> pl.DataFrame:
        """Return the list as a two column ``gene``/``score`` frame."""
        return pl.DataFrame(
            {'gene': list(self.ids), 'score': list(self.scores)},
            schema={'gene': pl.Utf8, 'score': pl.Float64},
        )


@dataclass(frozen=True)
class RankedLists:
    """The All/Up/Down variants built from one analysis configuration."""

    all: RankedList
    up: RankedList
    down: RankedList
    # Signed mean effect size per canonical id, used to colour networks
    effect_sizes: Mapping[str, float] = field(default_factory=dict)

    def get(self, direction: str) -> RankedList:
        if direction not in DIRECTIONS:
            raise ValueError(f"Unknown direction: {direction}")
        return getattr(self, direction)


@dataclass(frozen=True)
class Category:
    """A gene set collection to test against.

    Attributes:
        name: Short name used in file names and logs (e.g. ``GO_BP``)
        kind: One of ``ontology``, ``pathway`` or ``disease``
        gene_sets: Enrichr library name or path to a GMT file
        id_type: Identifier type used by the gene sets (``symbol`` or ``entrez``)
    """

    name: str
    kind: str
    gene_sets: str
    id_type: str = 'symbol'


@dataclass(frozen=True)
class EnrichmentResult:
    """One enriched term from a rank-based enrichment test."""

    term_id: str
    description: str
    normalized_score: float
    adjusted_p_value: float
    member_genes: FrozenSet[str] = frozenset()
    enrichment_score: float = float('nan')
    p_value: float = float('nan')
    set_size: int = 0

    @property
    def gene_ratio(self) -> float:
        if self.set_size <= 0:
            return 0.0
        return len(self.member_genes) / self.set_size


@dataclass(frozen=True)
class PathwayRenderRequest:
    """Input for the pathway-overlay renderer."""

    pathway_id: str
    organism_code: str
    ranked_scores: Mapping[str, float]
    suffix: str = 'pathview'
    id_type: str = 'entrez'


def empty_gene_records() -> pl.DataFrame:
    """Return an empty frame with the gene record layout."""
    return pl.DataFrame(schema=GENE_RECORD_SCHEMA)


def format_term_label(result: EnrichmentResult, max_length: Optional[int] = 60) -> str:
    """Return a display label for a term, truncated to ``max_length``."""
    label = result.description or result.term_id
    if max_length and len(label) > max_length:
        label = label[:max_length - 3].rstrip() + '...'
    return label
