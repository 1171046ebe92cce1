"""Shared fixtures and fake collaborators for the test suite."""

import io
import tempfile
from pathlib import Path

import matplotlib

matplotlib.use('Agg')

import matplotlib.pyplot as plt  # noqa: E402
import numpy as np  # noqa: E402
import pandas as pd  # noqa: E402
import pytest  # noqa: E402

from degenrich.errors import PathwayNotFoundError  # noqa: E402


def png_bytes(width=40, height=30):
    """Return a small PNG image as bytes."""
    buffer = io.BytesIO()
    plt.imsave(buffer, np.ones((height, width, 3)), format='png')
    return buffer.getvalue()


class FakeMyGene:
    """Stands in for ``mygene.MyGeneInfo`` with a fixed lookup table."""

    def __init__(self, table, fail=False):
        self.table = table
        self.fail = fail
        self.calls = []

    def querymany(self, queries, **kwargs):
        self.calls.append((list(queries), kwargs))
        if self.fail:
            raise ConnectionError("service unavailable")
        hits = []
        for query in queries:
            if query in self.table:
                entrez, symbol = self.table[query]
                hits.append({'query': query, 'entrezgene': entrez, 'symbol': symbol})
            else:
                hits.append({'query': query, 'notfound': True})
        return hits


class FakePrerankResult:
    def __init__(self, res2d):
        self.res2d = res2d


class FakePrerank:
    """Stands in for ``gseapy.prerank``, returning a fixed result table."""

    def __init__(self, rows=None, fail=False):
        self.rows = rows if rows is not None else []
        self.fail = fail
        self.calls = []

    def __call__(self, **kwargs):
        self.calls.append(kwargs)
        if self.fail:
            raise RuntimeError("prerank failed")
        return FakePrerankResult(pd.DataFrame(self.rows))


class SeedEchoPrerank:
    """Reports the seed it was called with as the term name.

    Calls made in worker processes are not visible to the parent, so the
    seed travels back through the result table instead.
    """

    def __call__(self, **kwargs):
        return FakePrerankResult(pd.DataFrame([
            gsea_row(f"seed {kwargs['seed']}", 1.5, 0.01, ''),
        ]))


class FakePathwayRenderer:
    """Writes a blank overlay for every pathway except those marked missing."""

    def __init__(self, missing=()):
        self.missing = set(missing)
        self.workdirs = []

    def render(self, request, workdir):
        self.workdirs.append(Path(workdir))
        if request.pathway_id in self.missing:
            raise PathwayNotFoundError(request.pathway_id)
        kegg_id = f"{request.organism_code}{len(self.workdirs):05d}"
        # Intermediate download the orchestrator must clean up
        (Path(workdir) / f"{kegg_id}.xml").write_text("<pathway/>")
        output = Path(workdir) / f"{kegg_id}.{request.suffix}.png"
        output.write_bytes(png_bytes())
        return output


def gsea_row(term, nes, fdr, lead, es=None, pval=0.001, tag='3/20'):
    """Build one row of a GSEApy ``res2d`` table."""
    return {
        'Name': 'prerank',
        'Term': term,
        'ES': es if es is not None else nes / 2,
        'NES': nes,
        'NOM p-val': pval,
        'FDR q-val': fdr,
        'FWER p-val': fdr,
        'Tag %': tag,
        'Gene %': '10%',
        'Lead_genes': lead,
    }


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmp_dir:
        yield Path(tmp_dir)
