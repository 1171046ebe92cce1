"""
Rank-based gene set enrichment through GSEApy's prerank procedure.
"""

import logging
import math
import re
import zlib
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import gseapy as gp
import pandas as pd
import polars as pl

from .errors import ExternalServiceFailure
from .models import Category, EnrichmentResult, RankedList

logger = logging.getLogger(__name__)

# Enrichr library names per organism
_GO_LIBRARIES = [
    ('GO_BP', 'GO_Biological_Process_2023'),
    ('GO_CC', 'GO_Cellular_Component_2023'),
    ('GO_MF', 'GO_Molecular_Function_2023'),
]
_KEGG_LIBRARIES = {
    'human': 'KEGG_2021_Human',
    'mouse': 'KEGG_2019_Mouse',
}
# Disease-gene databases only exist for human genes
_DISEASE_LIBRARIES = {
    'human': [('DisGeNET', 'DisGeNET'), ('DISEASES', 'Jensen_DISEASES')],
}

# Trailing accession in Enrichr term names, e.g. "apoptotic process (GO:0006915)"
_TERM_ID_PATTERN = re.compile(r'^(?P<description>.*?)\s*\((?P<term_id>[A-Za-z]+:\d+)\)\s*$')


def default_categories(organism: str) -> List[Category]:
    """
    Return the default category catalogue for an organism.

    Args:
        organism: ``human`` or ``mouse``

    Returns:
        GO subdomains, KEGG pathways and (for human) disease-gene databases
    """
    categories = [Category(name, 'ontology', library) for name, library in _GO_LIBRARIES]
    if organism in _KEGG_LIBRARIES:
        categories.append(Category('KEGG', 'pathway', _KEGG_LIBRARIES[organism]))
    for name, library in _DISEASE_LIBRARIES.get(organism, []):
        categories.append(Category(name, 'disease', library))
    return categories


def combination_seed(base_seed: int, key: str) -> int:
    """Derive a reproducible seed for one (category, direction) combination."""
    return (base_seed + zlib.crc32(key.encode('utf-8'))) % (2 ** 31 - 1)


def split_term(term: str) -> Tuple[str, str]:
    """Split an Enrichr term name into (term id, description)."""
    match = _TERM_ID_PATTERN.match(term)
    if match:
        return match.group('term_id'), match.group('description')
    return term, term


def _as_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return float('nan')


def _set_size(tag: Any) -> int:
    """Parse the set size out of a GSEApy ``Tag %`` value such as ``12/50``."""
    if isinstance(tag, str) and '/' in tag:
        try:
            return int(tag.split('/')[1])
        except ValueError:
            return 0
    return 0


class EnrichmentRunner:
    """
    Run prerank GSEA for one ranked list against one category.

    The runner only builds the request and shapes the response; the statistics
    are computed by GSEApy.
    """

    def __init__(
        self,
        permutations: int = 1000,
        min_size: int = 10,
        max_size: int = 500,
        seed: int = 42,
        threads: int = 1,
        prerank: Optional[Callable[..., Any]] = None,
    ):
        """
        Args:
            permutations: Number of permutations for the null distribution
            min_size: Minimum gene set size tested
            max_size: Maximum gene set size tested
            seed: Random seed handed to every prerank call
            threads: Threads used inside GSEApy
            prerank: Enrichment callable; defaults to ``gseapy.prerank``
        """
        self.permutations = permutations
        self.min_size = min_size
        self.max_size = max_size
        self.seed = seed
        self.threads = threads
        self.prerank = prerank if prerank is not None else gp.prerank

    def _build_rank_table(
        self,
        ranked: RankedList,
        labels: Optional[Mapping[str, str]],
    ) -> Tuple[pd.DataFrame, Dict[str, str]]:
        """Return the prerank input and a label to canonical id lookup."""
        genes, scores, reverse = [], [], {}
        for canonical, score in ranked:
            label = labels.get(canonical) if labels is not None else canonical
            # Several canonical ids can share a symbol; keep the best-ranked one
            if not label or label in reverse:
                continue
            reverse[label] = canonical
            genes.append(label)
            scores.append(score)
        return pd.DataFrame({'gene': genes, 'score': scores}), reverse

    def run(
        self,
        ranked: RankedList,
        category: Category,
        labels: Optional[Mapping[str, str]] = None,
        seed: Optional[int] = None,
    ) -> List[EnrichmentResult]:
        """
        Test a ranked list for enrichment in a category.

        Args:
            ranked: Ranked list of canonical ids
            category: Category to test
            labels: Canonical id to gene symbol, used when the category is keyed by symbol
            seed: Overrides the runner's seed for this call

        Returns:
            Enriched terms sorted by normalised enrichment score, descending.
            An empty ranked list gives an empty result.

        Raises:
            ExternalServiceFailure: If GSEApy fails
        """
        if len(ranked) == 0:
            logger.info(f"Empty {ranked.direction} list; skipping {category.name}")
            return []

        use_labels = labels if category.id_type == 'symbol' else None
        rnk, reverse = self._build_rank_table(ranked, use_labels)
        if rnk.empty:
            logger.warning(f"No {category.id_type} identifiers for the {ranked.direction} list; skipping {category.name}")
            return []

        logger.debug(f"Running prerank on {len(rnk)} genes against {category.gene_sets}")
        try:
            result = self.prerank(
                rnk=rnk,
                gene_sets=category.gene_sets,
                outdir=None,
                min_size=self.min_size,
                max_size=self.max_size,
                permutation_num=self.permutations,
                seed=self.seed if seed is None else seed,
                threads=self.threads,
                no_plot=True,
                verbose=False,
            )
        except Exception as e:
            raise ExternalServiceFailure(
                f"Enrichment of the {ranked.direction} list against {category.name} failed: {e}"
            ) from e

        table = getattr(result, 'res2d', None)
        if table is None or len(table) == 0:
            return []
        return self._shape_results(table, reverse)

    def _shape_results(self, table: pd.DataFrame, reverse: Mapping[str, str]) -> List[EnrichmentResult]:
        results = []
        for row in table.to_dict('records'):
            term = str(row.get('Term', ''))
            term_id, description = split_term(term)

            lead = row.get('Lead_genes') or ''
            members = frozenset(
                reverse.get(gene, gene)
                for gene in (g.strip() for g in str(lead).split(";"))
                if gene
            )

            nes = _as_float(row.get('NES'))
            padj = _as_float(row.get('FDR q-val'))
            if math.isnan(padj):
                padj = 1.0

            results.append(EnrichmentResult(
                term_id=term_id,
                description=description,
                normalized_score=nes,
                adjusted_p_value=min(max(padj, 0.0), 1.0),
                member_genes=members,
                enrichment_score=_as_float(row.get('ES')),
                p_value=_as_float(row.get('NOM p-val')),
                set_size=_set_size(row.get('Tag %')),
            ))

        results.sort(key=lambda r: (-r.normalized_score if not math.isnan(r.normalized_score) else math.inf, r.term_id))
        return results


def results_to_frame(results: List[EnrichmentResult]) -> pl.DataFrame:
    """Return enrichment results as a table for export."""
    return pl.DataFrame({
        'term_id': [r.term_id for r in results],
        'description': [r.description for r in results],
        'enrichment_score': [r.enrichment_score for r in results],
        'normalized_score': [r.normalized_score for r in results],
        'p_value': [r.p_value for r in results],
        'adjusted_p_value': [r.adjusted_p_value for r in results],
        'set_size': [r.set_size for r in results],
        'core_size': [len(r.member_genes) for r in results],
        'member_genes': [';'.join(sorted(r.member_genes)) for r in results],
    })
