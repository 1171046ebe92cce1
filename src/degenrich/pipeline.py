"""Main pipeline implementation for enrichment reports on differential expression results."""

import json
import logging
import platform
import random
import time
from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple

import numpy as np
import polars as pl
from tqdm.auto import tqdm

from .config import PipelineConfig
from .data import load_gene_table, load_pathway_list
from .enrichment import EnrichmentRunner, combination_seed, results_to_frame
from .errors import ExternalServiceFailure
from .kegg import KeggPathwayRenderer
from .mapping import IdentifierMapper, apply_mapping
from .models import Category, EnrichmentResult, RankedList, RankedLists
from .pathview import PathwayImageOrchestrator, PathwayRenderSummary
from .ranking import build_ranked_lists, preselect_genes
from .selection import Selection, select_results
from .utils import artifact_stem, ensure_dir
from .visualise import render_selection

# Configure tqdm to work properly on macOS
is_mac = platform.system() == 'Darwin'
tqdm_kwargs = {
    'position': 0,
    'leave': True,
    'ncols': 100,
    'dynamic_ncols': True,
    'ascii': is_mac,
}


@dataclass
class CombinationOutcome:
    """What happened to one (category, direction) combination."""

    category: str
    direction: str
    results: List[EnrichmentResult] = field(default_factory=list)
    selection: Optional[Selection] = None
    plots: Dict[str, Path] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def key(self) -> str:
        return f"{self.category}_{self.direction}"

    @property
    def n_significant(self) -> int:
        return len(self.selection) if self.selection is not None else 0


def _run_combination(
    runner: EnrichmentRunner,
    ranked: RankedList,
    category: Category,
    labels: Mapping[str, str],
    seed: Optional[int],
) -> List[EnrichmentResult]:
    """Run one enrichment call (module level so worker processes can pickle it)."""
    return runner.run(ranked, category, labels=labels, seed=seed)


class EnrichmentReportPipeline:
    """Main class for running enrichment reports."""

    def __init__(
        self,
        config_path: str,
        mapper: Optional[IdentifierMapper] = None,
        runner: Optional[EnrichmentRunner] = None,
        pathway_renderer=None,
    ):
        """Initialise the pipeline with a configuration file.

        Args:
            config_path: Path to the TOML configuration file
            mapper: Identifier mapper; defaults to MyGene.info for the configured organism
            runner: Enrichment runner; defaults to GSEApy prerank with the configured settings
            pathway_renderer: Pathway-overlay renderer; defaults to the KEGG renderer
        """
        self.config = PipelineConfig(config_path)
        self.logger = logging.getLogger(__name__)

        self.mapper = mapper or IdentifierMapper(
            species=self.config.organism.taxon_id,
            source=self.config.id_namespace,
        )
        self.runner = runner or EnrichmentRunner(
            permutations=self.config.permutations,
            min_size=self.config.min_size,
            max_size=self.config.max_size,
            seed=self.config.seed,
        )
        self.pathway_renderer = pathway_renderer

        self.outcomes: Dict[Tuple[str, str], CombinationOutcome] = {}
        self.ranked_lists: Optional[RankedLists] = None
        self.labels: Dict[str, str] = {}
        self.pathway_summary: Optional[PathwayRenderSummary] = None

        self._load_input_data()

    def _load_input_data(self):
        """Load and validate input data files."""
        self.logger.debug("Starting to load input data files")

        self.gene_records = load_gene_table(
            self.config.input_file,
            sheet=self.config.sheet,
            id_column=self.config.id_column,
            effect_column=self.config.effect_column,
            significance_column=self.config.significance_column,
        )

        if self.config.pathway_sheet:
            self.pathway_names = load_pathway_list(
                self.config.input_file,
                sheet=self.config.pathway_sheet,
                column=self.config.pathway_column,
            )
            self.logger.info(f"Loaded {len(self.pathway_names)} pathway names from {self.config.pathway_sheet}")
        else:
            self.pathway_names = None

        self.logger.info(
            f"Analysing {self.config.organism.name} genes ranked by {self.config.ranking} "
            f"against {len(self.config.categories)} categories"
        )
        self.logger.debug("Finished loading input data files")

    def _seed(self):
        """Fix the process-wide random state once for the whole run."""
        random.seed(self.config.seed)
        np.random.seed(self.config.seed)

    def prepare_ranked_lists(self) -> RankedLists:
        """Run the loading, mapping and ranking stages."""
        self.logger.info("Step 1: Selecting genes")
        records = preselect_genes(self.gene_records, self.config.max_genes, self.config.ranking)

        self.logger.info("Step 2: Mapping identifiers")
        mapping = self.mapper.map(records['gene_id'].to_list())
        mapped = apply_mapping(records, mapping)
        self.labels = self.mapper.symbols()

        self.logger.info("Step 3: Building ranked lists")
        self.ranked_lists = build_ranked_lists(mapped, self.config.ranking)
        return self.ranked_lists

    def combinations(self) -> List[Tuple[Category, str]]:
        """Return every (category, direction) pair to test, in run order."""
        return [
            (category, direction)
            for category in self.config.categories
            for direction in self.config.directions
        ]

    def run(self):
        """Run the enrichment report pipeline."""
        self.logger.info("Starting enrichment report pipeline")
        start_time = time.time()
        self._seed()

        ranked_lists = self.prepare_ranked_lists()

        self.logger.info("Step 4: Running enrichment")
        combinations = self.combinations()
        num_threads = max(1, min(len(combinations), int(self.config.num_threads)))
        if num_threads > 1:
            self._run_parallel(ranked_lists, combinations, num_threads)
        else:
            self._run_sequential(ranked_lists, combinations)

        failed = [o for o in self.outcomes.values() if o.error]
        if failed:
            self.logger.warning(f"{len(failed)} of {len(combinations)} combinations failed")

        self.logger.info("Step 5: Selecting and plotting terms")
        for outcome in self.outcomes.values():
            self._select_and_plot(outcome)

        if self.config.pathway_count > 0:
            self.logger.info("Step 6: Rendering pathways")
            self.render_pathways()

        self.logger.info("Saving results")
        self.save_results()

        elapsed_time = time.time() - start_time
        self.logger.info(f"Pipeline completed in {elapsed_time:.2f} seconds")
        return self.outcomes

    def _run_sequential(self, ranked_lists: RankedLists, combinations):
        """Run every combination in this process with the run-wide seed."""
        for category, direction in tqdm(combinations, desc="Enrichment", unit="test", **tqdm_kwargs):
            outcome = CombinationOutcome(category.name, direction)
            try:
                outcome.results = _run_combination(
                    self.runner, ranked_lists.get(direction), category, self.labels, None
                )
            except ExternalServiceFailure as e:
                self.logger.error(f"Skipping {outcome.key}: {e}")
                outcome.error = str(e)
            self.outcomes[(category.name, direction)] = outcome

    def _run_parallel(self, ranked_lists: RankedLists, combinations, num_threads: int):
        """Run combinations in worker processes, each with a seed derived from its key."""
        self.logger.info(f"Processing {len(combinations)} combinations using {num_threads} parallel workers")
        with ProcessPoolExecutor(max_workers=num_threads) as executor:
            futures = {}
            for category, direction in combinations:
                seed = combination_seed(self.config.seed, f"{category.name}_{direction}")
                future = executor.submit(
                    _run_combination,
                    self.runner,
                    ranked_lists.get(direction),
                    category,
                    self.labels,
                    seed,
                )
                futures[future] = (category, direction)

            with tqdm(total=len(futures), desc="Enrichment", unit="test", **tqdm_kwargs) as pbar:
                for future in as_completed(futures):
                    category, direction = futures[future]
                    outcome = CombinationOutcome(category.name, direction)
                    try:
                        outcome.results = future.result()
                    except ExternalServiceFailure as e:
                        self.logger.error(f"Skipping {outcome.key}: {e}")
                        outcome.error = str(e)
                    self.outcomes[(category.name, direction)] = outcome
                    pbar.update(1)

        # Keep run order regardless of completion order
        self.outcomes = {
            (c.name, d): self.outcomes[(c.name, d)] for c, d in combinations
        }

    def _select_and_plot(self, outcome: CombinationOutcome):
        outcome.selection = select_results(
            outcome.results,
            cutoff=self.config.cutoff,
            max_count=self.config.max_terms,
            direction=outcome.direction,
        )
        if outcome.selection.is_empty:
            if not outcome.error:
                self.logger.info(f"No terms pass padj <= {self.config.cutoff} for {outcome.key}")
            return

        stem = artifact_stem(self.config.organism.name, outcome.category, outcome.direction, self.config.suffix)
        plots_path = ensure_dir(self.config.get_output_path('plots'))
        outcome.plots = render_selection(
            outcome.selection,
            plots_path,
            stem,
            effect_sizes=self.ranked_lists.effect_sizes,
            labels=self.labels,
            title=f"{outcome.category} ({outcome.direction})",
            seed=self.config.seed,
        )

    def pathway_ids(self) -> List[str]:
        """Return the pathways to render, from the pathway sheet or the pathway results."""
        count = self.config.pathway_count
        if self.pathway_names is not None:
            return self.pathway_names[:count]

        name = self.config.pathway_category
        if name is None:
            name = next((c.name for c in self.config.categories if c.kind == 'pathway'), None)
        outcome = self.outcomes.get((name, 'all')) if name else None
        if outcome is None or outcome.selection is None:
            self.logger.warning("No pathway results available to choose pathways from")
            return []
        return [r.description for r in outcome.selection.strongest_first()][:count]

    def render_pathways(self) -> Optional[PathwayRenderSummary]:
        """Render pathway overlays for the chosen pathways into one document."""
        pathway_ids = self.pathway_ids()
        if not pathway_ids:
            self.logger.info("No pathways to render")
            return None

        renderer = self.pathway_renderer or KeggPathwayRenderer(limit=self.config.pathway_limit)
        orchestrator = PathwayImageOrchestrator(
            renderer,
            organism_code=self.config.organism.kegg_code,
            suffix=self.config.pathway_suffix,
        )
        self.pathway_summary = orchestrator.render_all(
            pathway_ids,
            self.ranked_lists.all.as_dict(),
            self.config.get_output_path('pathways'),
            merge=self.config.merge_pathways,
            combined_name=f"{self.config.organism.name}_pathways{self.config.suffix}.pdf",
        )
        return self.pathway_summary

    def save_results(self, output_dir: Optional[str] = None):
        """Save analysis results.

        Args:
            output_dir: Optional output directory path. If not provided,
                        uses the directory from the configuration.
        """
        if not self.outcomes:
            self.logger.warning("No results to save. Run the pipeline first.")
            return

        output_path = Path(output_dir) if output_dir else self.config.get_output_path()
        data_path = ensure_dir(output_path / 'data')
        organism = self.config.organism.name
        suffix = self.config.suffix

        # 1. Per-combination result tables
        for outcome in self.outcomes.values():
            if outcome.results:
                stem = artifact_stem(organism, outcome.category, outcome.direction, suffix)
                results_to_frame(outcome.results).write_csv(data_path / f"{stem}_gsea.csv")

        # 2. Ranked lists
        if self.ranked_lists is not None and self.config.output_config.get('save_ranked_lists', True):
            for direction in ('all', 'up', 'down'):
                ranked = self.ranked_lists.get(direction)
                ranked.to_frame().write_csv(
                    data_path / f"{organism}_ranked_{direction}{suffix}.rnk",
                    separator='\t',
                    include_header=False,
                )

        # 3. Summary table
        summary = pl.DataFrame(
            [
                {
                    'Category': o.category,
                    'Direction': o.direction,
                    'TermsTested': len(o.results),
                    'TermsSignificant': o.n_significant,
                    'TopTerm': o.selection.strongest_first()[0].description if o.n_significant else None,
                    'Status': 'failed' if o.error else ('ok' if o.n_significant else 'no significant terms'),
                }
                for o in self.outcomes.values()
            ],
            schema={
                'Category': pl.Utf8,
                'Direction': pl.Utf8,
                'TermsTested': pl.Int64,
                'TermsSignificant': pl.Int64,
                'TopTerm': pl.Utf8,
                'Status': pl.Utf8,
            },
        )
        summary_file = data_path / 'enrichment_summary.csv'
        summary.write_csv(summary_file)
        self.logger.info(f"Saved summary to {summary_file}")

        # 4. Significant terms in full detail
        json_file = data_path / 'enrichment_results.json'
        with open(json_file, 'w') as f:
            json.dump(
                {
                    o.key: {
                        'error': o.error,
                        'plots': {kind: str(path) for kind, path in o.plots.items()},
                        'terms': [
                            {
                                'term_id': r.term_id,
                                'description': r.description,
                                'normalized_score': r.normalized_score,
                                'adjusted_p_value': r.adjusted_p_value,
                                'member_genes': sorted(r.member_genes),
                            }
                            for r in (o.selection.strongest_first() if o.selection else ())
                        ],
                    }
                    for o in self.outcomes.values()
                },
                f,
                indent=2,
            )
        self.logger.info(f"Saved results to {json_file}")

        # 5. Pipeline configuration
        config_file = data_path / 'pipeline_config.json'
        with open(config_file, 'w') as f:
            json.dump(self.config.to_dict(), f, indent=2)
        self.logger.info(f"Saved configuration to {config_file}")

        # 6. README with explanation of output files
        readme_file = output_path / 'README.md'
        with open(readme_file, 'w') as f:
            f.write("# Enrichment Report Results\n\n")
            f.write(f"Analysis completed on {time.strftime('%Y-%m-%d %H:%M:%S')}\n\n")
            f.write("## Files\n\n")
            f.write("- `data/*_gsea.csv`: All tested terms per category and direction\n")
            f.write("- `data/*.rnk`: Ranked gene lists used for the enrichment tests\n")
            f.write("- `data/enrichment_summary.csv`: One row per category and direction\n")
            f.write("- `data/enrichment_results.json`: Significant terms with their core genes\n")
            f.write("- `data/pipeline_config.json`: Configuration used for this analysis\n")
            f.write("- `plots/`: Bar charts, dot plots, enrichment maps and gene-term networks\n")
            if self.pathway_summary is not None and self.pathway_summary.combined is not None:
                f.write(f"- `pathways/{self.pathway_summary.combined.name}`: Pathway overlays\n")
        self.logger.info(f"Saved README to {readme_file}")
