"""
Gene identifier translation through the MyGene.info service.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

import mygene
import polars as pl

from .errors import ExternalServiceFailure

logger = logging.getLogger(__name__)

# MyGene.info scope for canonical (Entrez) gene ids
ENTREZ_SCOPE = 'entrezgene'


def _canonical_value(value: Any) -> Optional[str]:
    """Normalise an Entrez id returned by MyGene.info to a string."""
    if value is None:
        return None
    if isinstance(value, list):
        value = value[0] if value else None
        if value is None:
            return None
    if isinstance(value, float):
        value = int(value)
    value = str(value).strip()
    return value or None


class IdentifierMapper:
    """
    Translate source identifiers to canonical Entrez ids.

    Lookups are cached for the lifetime of the mapper, so one pipeline run never
    re-queries an identifier and always sees the same answer for it.
    """

    def __init__(
        self,
        species: str = 'human',
        source: str = 'ensembl.gene',
        client: Any = None,
        batch_size: int = 1000,
    ):
        """
        Args:
            species: Species name or taxon id understood by MyGene.info
            source: Scope of the raw identifiers (e.g. ``ensembl.gene``, ``symbol``)
            client: Object with a ``querymany`` method; defaults to ``mygene.MyGeneInfo``
            batch_size: Number of identifiers sent per request
        """
        self.species = species
        self.source = source
        self.client = client if client is not None else mygene.MyGeneInfo()
        self.batch_size = batch_size
        self._cache: Dict[str, Tuple[Optional[str], Optional[str]]] = {}

    def _query(self, identifiers: List[str]) -> None:
        for start in range(0, len(identifiers), self.batch_size):
            batch = identifiers[start:start + self.batch_size]
            try:
                hits = self.client.querymany(
                    batch,
                    scopes=self.source,
                    fields='entrezgene,symbol',
                    species=self.species,
                    returnall=False,
                    verbose=False,
                )
            except Exception as e:
                raise ExternalServiceFailure(f"Identifier translation failed: {e}") from e

            for hit in hits:
                query = hit.get('query')
                # The first hit for a query wins; later duplicates are ignored
                if query is None or query in self._cache:
                    continue
                if hit.get('notfound'):
                    self._cache[query] = (None, None)
                    continue
                canonical = _canonical_value(hit.get('entrezgene'))
                if canonical is None and self.source == ENTREZ_SCOPE:
                    canonical = _canonical_value(query)
                self._cache[query] = (canonical, hit.get('symbol'))

            for query in batch:
                self._cache.setdefault(query, (None, None))

    def map(self, identifiers: Iterable[str]) -> Dict[str, str]:
        """
        Map raw identifiers to canonical ids.

        Args:
            identifiers: Raw identifiers in the source namespace

        Returns:
            Mapping of raw identifier to canonical id. Unmapped identifiers are absent.
        """
        identifiers = list(dict.fromkeys(i for i in identifiers if i))
        pending = [i for i in identifiers if i not in self._cache]
        if pending:
            logger.info(f"Translating {len(pending)} identifiers from {self.source} to {ENTREZ_SCOPE}")
            self._query(pending)

        mapping = {i: self._cache[i][0] for i in identifiers if self._cache[i][0] is not None}
        unmapped = len(identifiers) - len(mapping)
        if unmapped:
            logger.info(f"{unmapped} of {len(identifiers)} identifiers have no {ENTREZ_SCOPE} mapping")
        return mapping

    def symbols(self) -> Dict[str, str]:
        """Return canonical id to gene symbol for every identifier seen so far."""
        return {
            canonical: symbol
            for canonical, symbol in self._cache.values()
            if canonical is not None and symbol
        }


def apply_mapping(records: pl.DataFrame, mapping: Dict[str, str]) -> pl.DataFrame:
    """
    Fill in canonical ids and drop records that did not map.

    Args:
        records: Gene record frame
        mapping: Raw identifier to canonical id

    Returns:
        Gene record frame with a non-null canonical_id on every row
    """
    if not mapping:
        logger.info(f"Discarded all {records.height} records: no identifier could be mapped")
        return records.head(0)

    mapped = records.with_columns(
        pl.col('gene_id').replace_strict(mapping, default=None, return_dtype=pl.Utf8).alias('canonical_id')
    ).filter(pl.col('canonical_id').is_not_null())

    dropped = records.height - mapped.height
    if dropped:
        logger.info(f"Discarded {dropped} of {records.height} records without a canonical id")
    return mapped
