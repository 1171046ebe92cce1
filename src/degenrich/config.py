"""Configuration handling for the enrichment report pipeline."""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import tomli
import tomli_w

from .enrichment import default_categories
from .models import CATEGORY_KINDS, DIRECTIONS, Category


@dataclass(frozen=True)
class Organism:
    """Annotation references for a supported organism."""

    name: str
    species: str
    taxon_id: int
    kegg_code: str


ORGANISMS = {
    'human': Organism('human', 'human', 9606, 'hsa'),
    'mouse': Organism('mouse', 'mouse', 10090, 'mmu'),
}

RANKING_MODES = ('effect', 'significance')
WORKBOOK_SUFFIXES = ('.xlsx', '.xlsm')


class PipelineConfig:
    """Configuration class for the enrichment report pipeline."""

    def __init__(self, config_path: Union[str, Path]):
        """Initialise the configuration from a TOML file.

        Args:
            config_path: Path to the TOML configuration file
        """
        self.config_path = config_path

        try:
            with open(config_path, "rb") as f:
                self.config = tomli.load(f)
        except FileNotFoundError:
            raise ValueError(f"Error loading configuration file: {config_path} does not exist")
        except tomli.TOMLDecodeError as e:
            raise ValueError(f"Error loading configuration file: {str(e)}")

        required_sections = ['input', 'output', 'analysis']
        missing_sections = [section for section in required_sections if section not in self.config]
        if missing_sections:
            raise ValueError(f"Missing required sections in configuration: {', '.join(missing_sections)}")

        self.input_files = self.config.get("input", {})
        if 'file' not in self.input_files:
            raise ValueError("Missing required input in configuration: file")
        self.input_file = Path(self.input_files['file'])
        self.sheet = self.input_files.get('sheet')
        if self.sheet is None and self.input_file.suffix.lower() in WORKBOOK_SUFFIXES:
            raise ValueError("Missing required input in configuration: sheet")
        self.id_column = self.input_files.get('id_column', 'gene_id')
        self.effect_column = self.input_files.get('effect_column', 'log2FoldChange')
        self.significance_column = self.input_files.get('significance_column', 'padj')
        self.pathway_sheet = self.input_files.get('pathway_sheet')
        self.pathway_column = self.input_files.get('pathway_column')

        self.output_config = self.config.get("output", {})
        self.suffix = self.output_config.get('suffix', '')

        self.analysis_params = self.config.get("analysis", {})

        organism = self.analysis_params.get('organism', 'human')
        if organism not in ORGANISMS:
            raise ValueError(
                f"Invalid organism '{organism}': choose one of {', '.join(ORGANISMS)}"
            )
        self.organism = ORGANISMS[organism]

        self.ranking = self.analysis_params.get('ranking', 'effect')
        if self.ranking not in RANKING_MODES:
            raise ValueError(
                f"Invalid ranking mode '{self.ranking}': choose one of {', '.join(RANKING_MODES)}"
            )

        self.id_namespace = self.analysis_params.get('id_namespace', 'ensembl.gene')
        self.cutoff = float(self.analysis_params.get('cutoff', 0.05))
        if not 0 < self.cutoff <= 1:
            raise ValueError(f"Invalid cutoff {self.cutoff}: must be in (0, 1]")

        # 0 disables truncation
        self.max_genes = int(self.analysis_params.get('max_genes', 0)) or None
        self.max_terms = int(self.analysis_params.get('max_terms', 20))
        self.permutations = int(self.analysis_params.get('permutations', 1000))
        self.min_size = int(self.analysis_params.get('min_size', 10))
        self.max_size = int(self.analysis_params.get('max_size', 500))
        self.seed = int(self.analysis_params.get('seed', 42))
        self.num_threads = self.analysis_params.get('num_threads', 1)

        self.directions = list(self.analysis_params.get('directions', DIRECTIONS))
        unknown = [d for d in self.directions if d not in DIRECTIONS]
        if unknown:
            raise ValueError(f"Invalid directions in configuration: {', '.join(unknown)}")

        self.categories = self._parse_categories(self.config.get('categories'))

        self.pathway_config = self.config.get('pathways', {})
        self.pathway_count = int(self.pathway_config.get('count', 0))
        self.pathway_suffix = self.pathway_config.get('suffix', 'pathview')
        self.pathway_category = self.pathway_config.get('category')
        self.merge_pathways = self.pathway_config.get('merge', True)
        # None colours by the largest absolute score of the ranked list
        limit = self.pathway_config.get('limit')
        self.pathway_limit = float(limit) if limit is not None else None

    def _parse_categories(self, entries: Optional[List[Dict[str, Any]]]) -> List[Category]:
        """Build the category list, falling back to the organism defaults."""
        if not entries:
            return default_categories(self.organism.name)

        categories = []
        for entry in entries:
            missing = [key for key in ('name', 'kind', 'gene_sets') if key not in entry]
            if missing:
                raise ValueError(f"Category entry is missing: {', '.join(missing)}")
            if entry['kind'] not in CATEGORY_KINDS:
                raise ValueError(f"Invalid category kind: {entry['kind']}")
            categories.append(Category(
                name=entry['name'],
                kind=entry['kind'],
                gene_sets=entry['gene_sets'],
                id_type=entry.get('id_type', 'symbol'),
            ))
        return categories

    def get_category(self, name: str) -> Optional[Category]:
        """Return the category called ``name``, if configured."""
        for category in self.categories:
            if category.name == name:
                return category
        return None

    def get_output_path(self, subdir: Optional[str] = None) -> Path:
        """Get the path to the output directory or a subdirectory within it.

        Args:
            subdir: Optional subdirectory name within the output directory

        Returns:
            Path object for the requested directory
        """
        base_path = Path(self.output_config.get("directory", "results"))
        if subdir:
            return base_path / subdir
        return base_path

    def to_dict(self) -> Dict[str, Any]:
        """Return the resolved settings in a JSON-serialisable form."""
        return {
            'input': {k: str(v) for k, v in self.input_files.items()},
            'output': dict(self.output_config),
            'organism': self.organism.name,
            'ranking': self.ranking,
            'id_namespace': self.id_namespace,
            'cutoff': self.cutoff,
            'max_genes': self.max_genes,
            'max_terms': self.max_terms,
            'permutations': self.permutations,
            'min_size': self.min_size,
            'max_size': self.max_size,
            'seed': self.seed,
            'num_threads': self.num_threads,
            'directions': self.directions,
            'categories': [
                {'name': c.name, 'kind': c.kind, 'gene_sets': c.gene_sets, 'id_type': c.id_type}
                for c in self.categories
            ],
            'pathways': {
                'count': self.pathway_count,
                'suffix': self.pathway_suffix,
                'category': self.pathway_category,
                'merge': self.merge_pathways,
                'limit': self.pathway_limit,
            },
        }

    def save_config(self, output_path: Union[str, Path]) -> None:
        """Save the configuration to a TOML file.

        Args:
            output_path: Path to save the configuration file
        """
        with open(output_path, "wb") as f:
            tomli_w.dump(self.config, f)
