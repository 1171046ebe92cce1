"""
DEG Enrichment Reports
======================

A Python package for gene set enrichment and pathway reports on
differential expression results.
"""

from .pipeline import EnrichmentReportPipeline
from .config import PipelineConfig
from .errors import (
    DegEnrichError as DegEnrichError,
    MissingResourceError as MissingResourceError,
    MalformedDataError as MalformedDataError,
    ExternalServiceFailure as ExternalServiceFailure,
    PathwayNotFoundError as PathwayNotFoundError,
)
from .data import (
    load_gene_table as load_gene_table,
    load_pathway_list as load_pathway_list,
)
from .mapping import IdentifierMapper as IdentifierMapper, apply_mapping as apply_mapping
from .ranking import (
    preselect_genes as preselect_genes,
    build_ranked_lists as build_ranked_lists,
)
from .enrichment import EnrichmentRunner as EnrichmentRunner
from .selection import select_results as select_results
from .pathview import PathwayImageOrchestrator as PathwayImageOrchestrator
from .utils import setup_logging as setup_logging, ensure_dir as ensure_dir

__version__ = "0.1.0"

__all__ = [
    "EnrichmentReportPipeline",
    "PipelineConfig",
    "DegEnrichError",
    "MissingResourceError",
    "MalformedDataError",
    "ExternalServiceFailure",
    "PathwayNotFoundError",
    "load_gene_table",
    "load_pathway_list",
    "IdentifierMapper",
    "apply_mapping",
    "preselect_genes",
    "build_ranked_lists",
    "EnrichmentRunner",
    "select_results",
    "PathwayImageOrchestrator",
    "setup_logging",
    "ensure_dir",
]
