"""
Test cases for the enrichment report pipeline.
"""

import json

import polars as pl
import pytest
from tomli_w import dump as tomli_w_dump

from conftest import FakeMyGene, FakePathwayRenderer, FakePrerank, SeedEchoPrerank, gsea_row
from degenrich.enrichment import EnrichmentRunner, combination_seed
from degenrich.errors import MalformedDataError, MissingResourceError
from degenrich.mapping import IdentifierMapper
from degenrich.pipeline import EnrichmentReportPipeline

GENE_TABLE = {
    'ENSG01': (7157, 'TP53'),
    'ENSG02': (672, 'BRCA1'),
    'ENSG03': (1017, 'CDK2'),
    'ENSG04': (5290, 'PIK3CA'),
    'ENSG05': (1956, 'EGFR'),
}


@pytest.fixture
def input_file(temp_dir):
    """Create a differential expression table."""
    path = temp_dir / 'degs.csv'
    path.write_text(
        "gene_id,log2FoldChange,padj\n"
        "ENSG01,2.5,0.001\n"
        "ENSG02,-1.5,0.01\n"
        "ENSG03,1.0,0.04\n"
        "ENSG04,-3.0,0.0\n"
        "ENSG05,0.5,0.2\n"
        "ENSG01,1.5,0.002\n"
        "ENSG99,4.0,0.001\n"
    )
    return path


def make_config(temp_dir, input_file, **overrides):
    config = {
        'input': {'file': str(input_file)},
        'output': {'directory': str(temp_dir / 'results'), 'suffix': '_test'},
        'analysis': {'organism': 'human', 'permutations': 10, 'seed': 1},
        'categories': [
            {'name': 'GO_BP', 'kind': 'ontology', 'gene_sets': 'GO_Biological_Process_2023'},
            {'name': 'KEGG', 'kind': 'pathway', 'gene_sets': 'KEGG_2021_Human'},
        ],
    }
    for section, values in overrides.items():
        config.setdefault(section, {}).update(values)
    config_path = temp_dir / 'config.toml'
    with open(config_path, 'wb') as f:
        tomli_w_dump(config, f)
    return config_path


def make_runner(fail=False):
    prerank = FakePrerank([
        gsea_row('Cell cycle', 2.0, 0.01, 'TP53;CDK2'),
        gsea_row('p53 signaling pathway', 1.6, 0.02, 'TP53'),
        gsea_row('ErbB signaling pathway', -1.7, 0.03, 'PIK3CA;BRCA1'),
        gsea_row('Ribosome', 0.4, 0.8, 'EGFR'),
    ], fail=fail)
    return EnrichmentRunner(permutations=10, seed=1, prerank=prerank), prerank


def make_pipeline(config_path, fail=False, renderer=None):
    runner, prerank = make_runner(fail)
    pipeline = EnrichmentReportPipeline(
        str(config_path),
        mapper=IdentifierMapper(client=FakeMyGene(GENE_TABLE)),
        runner=runner,
        pathway_renderer=renderer or FakePathwayRenderer(),
    )
    return pipeline, prerank


def test_ranked_lists(temp_dir, input_file):
    pipeline, _ = make_pipeline(make_config(temp_dir, input_file))
    lists = pipeline.prepare_ranked_lists()
    # ENSG99 is unmapped; ENSG01's two rows are averaged
    assert lists.all.entries[0] == ('7157', 2.0)
    assert set(lists.all.ids) == {'7157', '672', '1017', '5290', '1956'}
    assert lists.down.ids == ('672', '5290')
    assert pipeline.labels['7157'] == 'TP53'


def test_max_genes_prefilter(temp_dir, input_file):
    config_path = make_config(temp_dir, input_file, analysis={'max_genes': 2})
    pipeline, _ = make_pipeline(config_path)
    lists = pipeline.prepare_ranked_lists()
    # ENSG99 (4.0) and ENSG04 (-3.0) survive; ENSG99 then fails to map
    assert lists.all.ids == ('5290',)


def test_run_writes_outputs(temp_dir, input_file):
    pipeline, prerank = make_pipeline(make_config(temp_dir, input_file))
    outcomes = pipeline.run()

    assert len(outcomes) == 6
    assert len(prerank.calls) == 6
    # Seed fixed once for the whole run
    assert {call['seed'] for call in prerank.calls} == {1}

    results_dir = temp_dir / 'results'
    data_dir = results_dir / 'data'
    assert (data_dir / 'human_GO_BP_all_test_gsea.csv').exists()
    assert (data_dir / 'human_ranked_all_test.rnk').exists()
    assert (data_dir / 'pipeline_config.json').exists()
    assert (results_dir / 'README.md').exists()
    assert (results_dir / 'plots' / 'human_KEGG_up_test_bar.png').exists()
    assert (results_dir / 'plots' / 'human_KEGG_down_test_cnet.png').exists()

    summary = pl.read_csv(data_dir / 'enrichment_summary.csv')
    assert summary.height == 6
    assert set(summary['Status'].to_list()) == {'ok'}
    assert summary['TermsSignificant'].to_list() == [3] * 6

    with open(data_dir / 'enrichment_results.json') as f:
        results = json.load(f)
    top = results['KEGG_all']['terms'][0]
    assert top['description'] == 'Cell cycle'
    assert top['member_genes'] == ['1017', '7157']


def test_down_selection_keeps_original_sign(temp_dir, input_file):
    pipeline, _ = make_pipeline(make_config(temp_dir, input_file))
    pipeline.run()
    selection = pipeline.outcomes[('KEGG', 'down')].selection
    assert selection.strongest_first()[0].description == 'ErbB signaling pathway'
    assert selection.strongest_first()[0].normalized_score == -1.7


def test_pathways_from_results(temp_dir, input_file):
    config_path = make_config(temp_dir, input_file, pathways={'count': 2})
    renderer = FakePathwayRenderer(missing={'p53 signaling pathway'})
    pipeline, _ = make_pipeline(config_path, renderer=renderer)
    pipeline.run()

    assert pipeline.pathway_ids() == ['Cell cycle', 'p53 signaling pathway']
    summary = pipeline.pathway_summary
    assert [pathway for pathway, _ in summary.rendered] == ['Cell cycle']
    assert summary.combined == temp_dir / 'results' / 'pathways' / 'human_pathways_test.pdf'
    assert summary.combined.exists()


def test_pathways_from_sheet(temp_dir):
    import openpyxl

    path = temp_dir / 'degs.xlsx'
    wb = openpyxl.Workbook()
    genes = wb.active
    genes.title = 'DEGs'
    genes.append(['gene_id', 'log2FoldChange', 'padj'])
    genes.append(['ENSG01', 2.0, 0.01])
    genes.append(['ENSG02', -1.0, 0.02])
    pathways = wb.create_sheet('Pathways')
    pathways.append(['Pathway'])
    for name in ['Apoptosis', 'Cell cycle', 'Ribosome']:
        pathways.append([name])
    wb.save(path)

    config_path = make_config(
        temp_dir, path,
        input={'sheet': 'DEGs', 'pathway_sheet': 'Pathways'},
        pathways={'count': 2},
    )
    pipeline, _ = make_pipeline(config_path)
    assert pipeline.pathway_names == ['Apoptosis', 'Cell cycle', 'Ribosome']
    assert pipeline.pathway_ids() == ['Apoptosis', 'Cell cycle']


def test_enrichment_failure_skips_combinations(temp_dir, input_file):
    pipeline, _ = make_pipeline(make_config(temp_dir, input_file), fail=True)
    outcomes = pipeline.run()
    assert all(outcome.error for outcome in outcomes.values())
    assert list((temp_dir / 'results' / 'plots').glob('*.png')) == []
    summary = pl.read_csv(temp_dir / 'results' / 'data' / 'enrichment_summary.csv')
    assert set(summary['Status'].to_list()) == {'failed'}


def test_no_significant_terms(temp_dir, input_file):
    config_path = make_config(temp_dir, input_file, analysis={'cutoff': 0.001})
    pipeline, _ = make_pipeline(config_path)
    pipeline.run()
    assert all(o.selection.is_empty for o in pipeline.outcomes.values())
    summary = pl.read_csv(temp_dir / 'results' / 'data' / 'enrichment_summary.csv')
    assert set(summary['Status'].to_list()) == {'no significant terms'}


def test_directions_subset(temp_dir, input_file):
    config_path = make_config(temp_dir, input_file, analysis={'directions': ['up']})
    pipeline, prerank = make_pipeline(config_path)
    pipeline.run()
    assert set(pipeline.outcomes) == {('GO_BP', 'up'), ('KEGG', 'up')}


def test_missing_input_file(temp_dir):
    config_path = make_config(temp_dir, temp_dir / 'absent.csv')
    with pytest.raises(MissingResourceError):
        make_pipeline(config_path)


def test_malformed_input(temp_dir):
    path = temp_dir / 'degs.csv'
    path.write_text("gene_id,lfc\nENSG01,1.0\n")
    with pytest.raises(MalformedDataError):
        make_pipeline(make_config(temp_dir, path))


def test_parallel_run_uses_combination_seeds(temp_dir, input_file):
    config_path = make_config(temp_dir, input_file, analysis={'num_threads': 2})
    pipeline = EnrichmentReportPipeline(
        str(config_path),
        mapper=IdentifierMapper(client=FakeMyGene(GENE_TABLE)),
        runner=EnrichmentRunner(permutations=10, seed=1, prerank=SeedEchoPrerank()),
        pathway_renderer=FakePathwayRenderer(),
    )
    outcomes = pipeline.run()

    expected_order = [
        (category, direction)
        for category in ('GO_BP', 'KEGG')
        for direction in ('all', 'up', 'down')
    ]
    # Outcomes follow run order, not completion order
    assert list(outcomes) == expected_order
    for (category, direction), outcome in outcomes.items():
        assert outcome.error is None
        seed = combination_seed(1, f"{category}_{direction}")
        assert [r.description for r in outcome.results] == [f"seed {seed}"]
    assert (temp_dir / 'results' / 'data' / 'enrichment_summary.csv').exists()
