"""
Plots of enrichment results: bar charts, dot plots and term networks.

Every function skips quietly (returning None) when the selection is empty.
"""

import itertools
import logging
from pathlib import Path
from typing import Dict, Iterable, Mapping, Optional

import matplotlib.pyplot as plt
import networkx as nx
import seaborn as sns

from .models import EnrichmentResult, format_term_label
from .selection import Selection

logger = logging.getLogger(__name__)

# Jaccard similarity above which two terms are linked in the enrichment map
MIN_TERM_SIMILARITY = 0.2
# Cap on gene nodes drawn per term in the gene-term network
MAX_GENES_PER_TERM = 15

UP_COLOUR = '#d62728'
DOWN_COLOUR = '#1f77b4'
TERM_COLOUR = '#e8c547'


def _figure_height(n_rows: int) -> float:
    return max(3.0, 0.35 * n_rows + 1.5)


def plot_enrichment_bar(selection: Selection, output_path: Path, title: str = '') -> Optional[Path]:
    """
    Draw a horizontal bar chart of term label against normalised score.

    Args:
        selection: Selected terms, weakest first
        output_path: Image file to write
        title: Plot title

    Returns:
        Path of the written image, or None for an empty selection
    """
    if selection.is_empty:
        return None

    df = selection.to_frame().to_pandas()
    colours = [UP_COLOUR if score > 0 else DOWN_COLOUR for score in df['display_score']]

    fig, ax = plt.subplots(figsize=(9, _figure_height(len(df))))
    # barh draws the first row at the bottom, so the strongest term lands on top
    positions = range(len(df))
    ax.barh(positions, df["display_score"], color=colours)
    ax.set_yticks(list(positions))
    ax.set_yticklabels(df["label"])
    ax.axvline(0, color='black', linewidth=0.8)
    ax.set_xlabel('Normalized enrichment score')
    ax.set_ylabel('')
    ax.set_title(title)
    ax.grid(True, axis='x', linestyle='--', alpha=0.7)

    fig.tight_layout()
    fig.savefig(output_path, bbox_inches='tight')
    plt.close(fig)
    return Path(output_path)


def plot_enrichment_dot(selection: Selection, output_path: Path, title: str = '') -> Optional[Path]:
    """
    Draw a dot plot of gene ratio per term, coloured by adjusted p-value.

    Args:
        selection: Selected terms, weakest first
        output_path: Image file to write
        title: Plot title

    Returns:
        Path of the written image, or None for an empty selection
    """
    if selection.is_empty:
        return None

    df = selection.to_frame().to_pandas()

    fig, ax = plt.subplots(figsize=(9, _figure_height(len(df))))
    sns.scatterplot(
        data=df,
        x='gene_ratio',
        y='label',
        hue='adjusted_p_value',
        size='core_size',
        palette='viridis_r',
        sizes=(40, 300),
        ax=ax,
    )
    ax.set_xlabel('Gene ratio')
    ax.set_ylabel('')
    ax.set_title(title)
    ax.legend(bbox_to_anchor=(1.02, 1), loc='upper left', borderaxespad=0, fontsize='small')

    fig.tight_layout()
    fig.savefig(output_path, bbox_inches='tight')
    plt.close(fig)
    return Path(output_path)


def jaccard(a: Iterable[str], b: Iterable[str]) -> float:
    """Jaccard similarity of two gene collections."""
    a, b = set(a), set(b)
    union = a | b
    if not union:
        return 0.0
    return len(a & b) / len(union)


def build_enrichment_map(
    results: Iterable[EnrichmentResult],
    min_similarity: float = MIN_TERM_SIMILARITY,
) -> nx.Graph:
    """
    Build a term-overlap network.

    Nodes are terms; an edge joins two terms whose core genes overlap with a
    Jaccard similarity of at least ``min_similarity``.
    """
    graph = nx.Graph()
    results = list(results)
    for result in results:
        graph.add_node(
            result.term_id,
            label=format_term_label(result, max_length=40),
            score=result.normalized_score,
            padj=result.adjusted_p_value,
            size=len(result.member_genes),
        )
    for a, b in itertools.combinations(results, 2):
        similarity = jaccard(a.member_genes, b.member_genes)
        if similarity >= min_similarity:
            graph.add_edge(a.term_id, b.term_id, weight=similarity)
    return graph


def plot_enrichment_map(selection: Selection, output_path: Path, title: str = '', seed: int = 42) -> Optional[Path]:
    """
    Draw the enrichment map of the selected terms.

    Returns:
        Path of the written image, or None for an empty selection
    """
    if selection.is_empty:
        return None

    graph = build_enrichment_map(selection.results)
    pos = nx.spring_layout(graph, seed=seed, k=1.5 / max(1, graph.number_of_nodes()) ** 0.5)

    padj = [graph.nodes[n]['padj'] for n in graph.nodes]
    sizes = [100 + 25 * graph.nodes[n]['size'] for n in graph.nodes]
    widths = [4 * graph.edges[e]['weight'] for e in graph.edges]

    fig, ax = plt.subplots(figsize=(10, 8))
    nx.draw_networkx_edges(graph, pos, width=widths, alpha=0.4, ax=ax)
    nodes = nx.draw_networkx_nodes(
        graph, pos,
        node_color=padj,
        node_size=sizes,
        cmap='viridis_r',
        vmin=0,
        vmax=max(padj) if max(padj) > 0 else 1,
        ax=ax,
    )
    nx.draw_networkx_labels(
        graph, pos,
        labels={n: graph.nodes[n]['label'] for n in graph.nodes},
        font_size=7,
        ax=ax,
    )
    fig.colorbar(nodes, ax=ax, label='Adjusted p-value', shrink=0.6)
    ax.set_title(title)
    ax.axis('off')

    fig.tight_layout()
    fig.savefig(output_path, bbox_inches='tight')
    plt.close(fig)
    return Path(output_path)


def build_gene_term_network(
    results: Iterable[EnrichmentResult],
    effect_sizes: Mapping[str, float],
    labels: Optional[Mapping[str, str]] = None,
    max_genes_per_term: int = MAX_GENES_PER_TERM,
) -> nx.Graph:
    """
    Build the bipartite gene-term network.

    Gene nodes carry their effect size; within each term the genes with the
    largest absolute effect size are kept.
    """
    labels = labels or {}
    graph = nx.Graph()
    for result in results:
        graph.add_node(
            result.term_id,
            kind='term',
            label=format_term_label(result, max_length=40),
        )
        genes = sorted(
            result.member_genes,
            key=lambda g: (-abs(effect_sizes.get(g, 0.0)), g),
        )[:max_genes_per_term]
        for gene in genes:
            node = f"gene:{gene}"
            if node not in graph:
                graph.add_node(
                    node,
                    kind='gene',
                    label=labels.get(gene, gene),
                    effect=effect_sizes.get(gene, 0.0),
                )
            graph.add_edge(result.term_id, node)
    return graph


def plot_gene_term_network(
    selection: Selection,
    output_path: Path,
    effect_sizes: Mapping[str, float],
    labels: Optional[Mapping[str, str]] = None,
    title: str = '',
    seed: int = 42,
) -> Optional[Path]:
    """
    Draw genes linked to the terms they drive, coloured by effect-size sign.

    Returns:
        Path of the written image, or None for an empty selection
    """
    if selection.is_empty:
        return None

    graph = build_gene_term_network(selection.results, effect_sizes, labels)
    pos = nx.spring_layout(graph, seed=seed)

    terms = [n for n, d in graph.nodes(data=True) if d['kind'] == 'term']
    genes = [n for n, d in graph.nodes(data=True) if d['kind'] == 'gene']
    gene_colours = [
        UP_COLOUR if graph.nodes[n]['effect'] > 0 else DOWN_COLOUR
        for n in genes
    ]

    fig, ax = plt.subplots(figsize=(11, 9))
    nx.draw_networkx_edges(graph, pos, alpha=0.3, ax=ax)
    nx.draw_networkx_nodes(graph, pos, nodelist=terms, node_color=TERM_COLOUR, node_size=500, ax=ax)
    nx.draw_networkx_nodes(graph, pos, nodelist=genes, node_color=gene_colours, node_size=120, ax=ax)
    nx.draw_networkx_labels(
        graph, pos,
        labels={n: graph.nodes[n]['label'] for n in graph.nodes},
        font_size=6,
        ax=ax,
    )
    ax.set_title(title)
    ax.axis('off')

    fig.tight_layout()
    fig.savefig(output_path, bbox_inches='tight')
    plt.close(fig)
    return Path(output_path)


def render_selection(
    selection: Selection,
    plots_dir: Path,
    stem: str,
    effect_sizes: Mapping[str, float],
    labels: Optional[Mapping[str, str]] = None,
    title: str = '',
    seed: int = 42,
) -> Dict[str, Path]:
    """
    Write every plot for one combination.

    Args:
        selection: Selected terms
        plots_dir: Directory the images go into
        stem: File name prefix for this combination
        effect_sizes: Canonical id to signed effect size
        labels: Canonical id to gene symbol
        title: Title shared by the plots
        seed: Seed for the network layouts

    Returns:
        Mapping of plot kind to written file; empty for an empty selection
    """
    if selection.is_empty:
        logger.debug(f"No terms selected for {stem}; skipping plots")
        return {}

    plots_dir = Path(plots_dir)
    written = {
        'bar': plot_enrichment_bar(selection, plots_dir / f"{stem}_bar.png", title),
        'dot': plot_enrichment_dot(selection, plots_dir / f"{stem}_dot.png", title),
        'emap': plot_enrichment_map(selection, plots_dir / f"{stem}_emap.png", title, seed=seed),
        'cnet': plot_gene_term_network(
            selection, plots_dir / f"{stem}_cnet.png", effect_sizes, labels, title, seed=seed
        ),
    }
    return {kind: path for kind, path in written.items() if path is not None}
