#!/usr/bin/env python3
"""
Command line interface for the enrichment report pipeline.
"""

import argparse
import logging
import sys
import tempfile
from pathlib import Path

import tomli
from tomli_w import dump

from .pipeline import EnrichmentReportPipeline
from .utils import setup_logging


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Run enrichment reports on differential expression results"
    )

    # Required arguments
    parser.add_argument(
        "config_file",
        type=str,
        help="Path to TOML configuration file"
    )

    # Input file overrides
    input_group = parser.add_argument_group("Input file overrides")
    input_group.add_argument(
        "--input",
        type=str,
        help="Override differential expression file path"
    )
    input_group.add_argument(
        "--sheet",
        type=str,
        help="Override sheet holding the per-gene table"
    )
    input_group.add_argument(
        "--pathway-sheet",
        type=str,
        help="Override sheet holding pathway names to render"
    )

    # Output configuration overrides
    output_group = parser.add_argument_group("Output configuration overrides")
    output_group.add_argument(
        "--output-dir",
        type=str,
        help="Override output directory"
    )
    output_group.add_argument(
        "--suffix",
        type=str,
        help="Override suffix appended to output file names"
    )

    # Analysis parameter overrides
    analysis_group = parser.add_argument_group("Analysis parameter overrides")
    analysis_group.add_argument(
        "--organism",
        choices=["human", "mouse"],
        help="Override organism"
    )
    analysis_group.add_argument(
        "--ranking",
        choices=["effect", "significance"],
        help="Override ranking mode"
    )
    analysis_group.add_argument(
        "--cutoff",
        type=float,
        help="Override adjusted p-value cutoff"
    )
    analysis_group.add_argument(
        "--max-genes",
        type=int,
        help="Override maximum number of genes considered"
    )
    analysis_group.add_argument(
        "--max-terms",
        type=int,
        help="Override maximum number of terms displayed"
    )
    analysis_group.add_argument(
        "--permutations",
        type=int,
        help="Override number of permutations"
    )
    analysis_group.add_argument(
        "--seed",
        type=int,
        help="Override random seed"
    )
    analysis_group.add_argument(
        "--num-threads",
        type=int,
        help="Override number of parallel workers"
    )

    # Pathway overrides
    pathway_group = parser.add_argument_group("Pathway overrides")
    pathway_group.add_argument(
        "--pathways",
        type=int,
        help="Override number of pathways to render (0 disables rendering)"
    )
    pathway_group.add_argument(
        "--no-merge",
        action="store_true",
        help="Keep individual pathway images instead of merging them"
    )

    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging"
    )

    return parser.parse_args(argv)


def update_config(config: dict, args: argparse.Namespace):
    """Update configuration with command line overrides."""
    for section in ('input', 'output', 'analysis', 'pathways'):
        config.setdefault(section, {})

    # Input file overrides
    if args.input:
        config['input']['file'] = args.input
    if args.sheet:
        config['input']['sheet'] = args.sheet
    if args.pathway_sheet:
        config['input']['pathway_sheet'] = args.pathway_sheet

    # Output configuration overrides
    if args.output_dir:
        config['output']['directory'] = args.output_dir
    if args.suffix is not None:
        config['output']['suffix'] = args.suffix

    # Analysis parameter overrides
    if args.organism:
        config['analysis']['organism'] = args.organism
    if args.ranking:
        config['analysis']['ranking'] = args.ranking
    if args.cutoff is not None:
        config['analysis']['cutoff'] = args.cutoff
    if args.max_genes is not None:
        config['analysis']['max_genes'] = args.max_genes
    if args.max_terms is not None:
        config['analysis']['max_terms'] = args.max_terms
    if args.permutations is not None:
        config['analysis']['permutations'] = args.permutations
    if args.seed is not None:
        config['analysis']['seed'] = args.seed
    if args.num_threads:
        config['analysis']['num_threads'] = args.num_threads

    # Pathway overrides
    if args.pathways is not None:
        config['pathways']['count'] = args.pathways
    if args.no_merge:
        config['pathways']['merge'] = False

    return config


def main(argv=None):
    """Main entry point for the CLI."""
    args = parse_args(argv)

    # Load and validate config file
    try:
        with open(args.config_file, 'rb') as f:
            config = tomli.load(f)
    except Exception as e:
        print(f"Error loading configuration file: {str(e)}")
        sys.exit(1)

    # Update config with command line overrides
    config = update_config(config, args)

    # Set up logging first, before any pipeline operations
    output_dir = Path(config['output'].get('directory', 'results'))
    setup_logging(output_dir / 'logs', logging.DEBUG if args.verbose else logging.INFO)

    logging.info("Starting enrichment report pipeline")
    logging.info(f"Using configuration file: {args.config_file}")

    # Save updated config to a temporary file
    with tempfile.NamedTemporaryFile('wb', suffix='.toml', delete=False) as f:
        dump(config, f)
        temp_config_path = Path(f.name)

    try:
        pipeline = EnrichmentReportPipeline(str(temp_config_path))
        pipeline.run()
        logging.info("Pipeline execution completed successfully")
    except Exception as e:
        logging.error(f"Pipeline execution failed: {str(e)}")
        sys.exit(1)
    finally:
        # Clean up temporary config file
        temp_config_path.unlink()


if __name__ == "__main__":
    main()
