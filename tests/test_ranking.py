"""Tests for ranked list construction."""

import math

import polars as pl
import pytest

from degenrich.models import GENE_RECORD_SCHEMA
from degenrich.ranking import (
    MAX_SIGNIFICANCE_SCORE,
    build_ranked_lists,
    preselect_genes,
    significance_score,
)


def make_records(rows):
    """Build a gene record frame from (gene_id, canonical_id, effect, p) tuples."""
    return pl.DataFrame(
        {
            'gene_id': [r[0] for r in rows],
            'effect_size': [r[2] for r in rows],
            'significance': [r[3] for r in rows],
            'canonical_id': [r[1] for r in rows],
        },
        schema=GENE_RECORD_SCHEMA,
    )


@pytest.fixture
def mixed_records():
    return make_records([
        ('g1', '1', 2.0, 0.01),
        ('g2', '2', -1.5, 0.001),
        ('g3', '3', 0.5, 0.2),
        ('g4', '4', -3.0, 0.05),
        ('g5', '5', 0.0, 0.9),
        ('g6', '2', -0.5, 0.01),
        ('g7', '7', 1.0, 0.0),
    ])


def test_duplicates_are_averaged():
    """A's duplicate scores are averaged before splitting."""
    records = make_records([
        ('a1', 'A', 2.0, 0.01),
        ('a2', 'A', 4.0, 0.02),
        ('b1', 'B', -1.0, 0.03),
    ])
    lists = build_ranked_lists(records, 'effect')
    assert lists.all.entries == (('A', 3.0), ('B', -1.0))
    assert lists.up.entries == (('A', 3.0),)
    assert lists.down.entries == (('B', -1.0),)


@pytest.mark.parametrize('mode', ['effect', 'significance'])
def test_lists_sorted_descending(mixed_records, mode):
    lists = build_ranked_lists(mixed_records, mode)
    for ranked in (lists.all, lists.up, lists.down):
        scores = list(ranked.scores)
        assert scores == sorted(scores, reverse=True)


@pytest.mark.parametrize('mode', ['effect', 'significance'])
def test_ids_unique(mixed_records, mode):
    lists = build_ranked_lists(mixed_records, mode)
    for ranked in (lists.all, lists.up, lists.down):
        assert len(set(ranked.ids)) == len(ranked)


@pytest.mark.parametrize('mode', ['effect', 'significance'])
def test_up_down_union(mixed_records, mode):
    """Up and Down together hold exactly the non-zero-effect ids of All."""
    lists = build_ranked_lists(mixed_records, mode)
    non_zero = {gene for gene in lists.all.ids if lists.effect_sizes[gene] != 0}
    assert set(lists.up.ids) | set(lists.down.ids) == non_zero
    assert not set(lists.up.ids) & set(lists.down.ids)
    assert '5' in lists.all.ids


def test_significance_sign_follows_effect(mixed_records):
    lists = build_ranked_lists(mixed_records, 'significance')
    scores = lists.all.as_dict()
    assert scores['4'] < 0
    assert math.isclose(scores['4'], -(-math.log10(0.05)))
    assert scores['1'] > 0
    # Down list membership follows the effect sign, rank follows the p-value
    assert lists.down.ids == ('4', '2')


def test_zero_significance_is_finite(mixed_records):
    lists = build_ranked_lists(mixed_records, 'significance')
    score = lists.all.as_dict()['7']
    assert math.isfinite(score)
    assert math.isclose(score, MAX_SIGNIFICANCE_SCORE)
    assert lists.all.ids[0] == '7'


def test_significance_score():
    assert math.isclose(significance_score(0.01), 2.0)
    assert math.isfinite(significance_score(0.0))
    # Clamped to the smallest subnormal double, 5e-324
    assert significance_score(0.0) > 323


def test_missing_values_skipped():
    records = make_records([
        ('g1', '1', 1.0, 0.01),
        ('g2', '2', None, 0.01),
        ('g3', '3', float('nan'), 0.01),
        ('g4', '4', -1.0, None),
    ])
    assert build_ranked_lists(records, 'effect').all.ids == ('1', '4')
    assert build_ranked_lists(records, 'significance').all.ids == ('1',)


def test_ties_broken_by_id():
    records = make_records([
        ('g1', 'B', 1.0, 0.01),
        ('g2', 'A', 1.0, 0.01),
    ])
    assert build_ranked_lists(records).all.ids == ('A', 'B')


def test_empty_records():
    lists = build_ranked_lists(make_records([]))
    assert len(lists.all) == 0
    assert len(lists.up) == 0
    assert len(lists.down) == 0


def test_unknown_mode(mixed_records):
    with pytest.raises(ValueError):
        build_ranked_lists(mixed_records, 'rank')
    with pytest.raises(ValueError):
        preselect_genes(mixed_records, 2, 'rank')


def test_preselect_keeps_largest_effect():
    records = make_records([
        ('g1', None, 1.0, 0.01),
        ('g2', None, -5.0, 0.2),
        ('g3', None, 2.0, 0.001),
    ])
    kept = preselect_genes(records, 1, 'effect')
    assert kept['gene_id'].to_list() == ['g2']


def test_preselect_by_significance():
    records = make_records([
        ('g1', None, 1.0, 0.01),
        ('g2', None, -5.0, 0.2),
        ('g3', None, 2.0, 0.001),
    ])
    kept = preselect_genes(records, 2, 'significance')
    assert kept['gene_id'].to_list() == ['g3', 'g1']


def test_preselect_without_limit(mixed_records):
    assert preselect_genes(mixed_records, None).height == mixed_records.height
    assert preselect_genes(mixed_records, 100).height == mixed_records.height


def test_ranked_list_frame(mixed_records):
    frame = build_ranked_lists(mixed_records).up.to_frame()
    assert frame.columns == ['gene', 'score']
    assert frame['gene'].to_list()[0] == '1'


def test_preselect_ties_keep_input_order():
    records = make_records([
        ('g1', None, 1.0, 0.01),
        ('g2', None, -2.0, 0.05),
        ('g3', None, 2.0, 0.05),
        ('g4', None, 2.0, 0.01),
    ])
    assert preselect_genes(records, 2, 'effect')['gene_id'].to_list() == ['g2', 'g3']
    assert preselect_genes(records, 3, 'significance')['gene_id'].to_list() == ['g1', 'g4', 'g2']
