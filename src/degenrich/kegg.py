"""
KEGG REST client and pathway-overlay renderer.

The renderer downloads a pathway's KGML description and base image, colours
every gene box by the mean score of the genes it represents and writes the
result next to the downloaded files, named ``<kegg id>.<suffix>.png``.

API Documentation: https://www.kegg.jp/kegg/rest/keggapi.html
"""

import logging
import re
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple

import matplotlib.pyplot as plt
import numpy as np
import requests
from matplotlib.colors import Normalize
from matplotlib.patches import Rectangle

from .errors import ExternalServiceFailure, PathwayNotFoundError
from .models import PathwayRenderRequest

logger = logging.getLogger(__name__)

# "hsa04110", "path:hsa04110" or a bare "04110"
_PATHWAY_ID_PATTERN = re.compile(r'^(?:path:)?(?P<org>[a-z]{2,4})?(?P<number>\d{5})$')
# " - Homo sapiens (human)" appended to organism-specific pathway names
_ORGANISM_SUFFIX_PATTERN = re.compile(r'\s+-\s+[^-]+\([^)]*\)\s*$')


def overlay_file_name(kegg_id: str, suffix: str) -> str:
    """File name the renderer writes an overlay under."""
    return f"{kegg_id}.{suffix}.png"


def _normalise_name(name: str) -> str:
    return _ORGANISM_SUFFIX_PATTERN.sub('', name).strip().lower()


class KeggClient:
    """
    Client for the KEGG REST API.

    Usage:
        client = KeggClient()
        kegg_id = client.resolve("Cell cycle", "hsa")
        kgml = client.get_kgml(kegg_id)
    """

    BASE_URL = "https://rest.kegg.jp"

    def __init__(self, timeout: int = 30, session: Optional[requests.Session] = None):
        """
        Args:
            timeout: Request timeout in seconds
            session: Optional pre-configured session
        """
        self.timeout = timeout
        self.session = session or requests.Session()
        self._pathway_lists: Dict[str, Dict[str, str]] = {}

    def _get(self, path: str, missing_id: Optional[str] = None) -> requests.Response:
        url = f"{self.BASE_URL}/{path}"
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            raise ExternalServiceFailure(f"KEGG request failed for {url}: {e}") from e

        if response.status_code in (400, 404) and missing_id is not None:
            raise PathwayNotFoundError(missing_id)
        if response.status_code != 200:
            raise ExternalServiceFailure(f"KEGG returned HTTP {response.status_code} for {url}")
        if missing_id is not None and not response.content:
            raise PathwayNotFoundError(missing_id)
        return response

    def list_pathways(self, organism_code: str) -> Dict[str, str]:
        """Return KEGG pathway id to name for an organism."""
        if organism_code not in self._pathway_lists:
            text = self._get(f"list/pathway/{organism_code}").text
            pathways = {}
            for line in text.strip().split('\n'):
                parts = line.split('\t')
                if len(parts) < 2:
                    continue
                pathways[parts[0].replace('path:', '')] = parts[1]
            self._pathway_lists[organism_code] = pathways
        return self._pathway_lists[organism_code]

    def resolve(self, pathway: str, organism_code: str) -> str:
        """
        Resolve a pathway id or name to an organism-specific KEGG id.

        Args:
            pathway: KEGG id (``hsa04110``, ``04110``) or pathway name (``Cell cycle``)
            organism_code: KEGG organism code

        Returns:
            KEGG pathway id such as ``hsa04110``

        Raises:
            PathwayNotFoundError: If a name does not match any pathway
        """
        pathway = pathway.strip()
        match = _PATHWAY_ID_PATTERN.match(pathway)
        if match:
            org = match.group('org')
            if org in (None, 'map', 'ko'):
                org = organism_code
            return f"{org}{match.group('number')}"

        wanted = _normalise_name(pathway)
        for kegg_id, name in self.list_pathways(organism_code).items():
            if _normalise_name(name) == wanted:
                return kegg_id
        raise PathwayNotFoundError(pathway, f"No {organism_code} pathway named '{pathway}'")

    def get_kgml(self, kegg_id: str) -> str:
        """Download the KGML description of a pathway."""
        return self._get(f"get/{kegg_id}/kgml", missing_id=kegg_id).text

    def get_image(self, kegg_id: str) -> bytes:
        """Download the base PNG image of a pathway."""
        return self._get(f"get/{kegg_id}/image", missing_id=kegg_id).content


def parse_gene_boxes(kgml: str) -> List[Tuple[List[str], float, float, float, float]]:
    """
    Extract gene boxes from KGML.

    Returns:
        One (gene ids, x, y, width, height) tuple per gene entry. Gene ids drop
        the organism prefix (``hsa:1017`` becomes ``1017``); coordinates are the
        box centre as given in KGML.
    """
    root = ET.fromstring(kgml)
    boxes = []
    for entry in root.findall('entry'):
        if entry.get('type') != 'gene':
            continue
        graphics = entry.find('graphics')
        if graphics is None or graphics.get('type', 'rectangle') != 'rectangle':
            continue
        try:
            x = float(graphics.get('x'))
            y = float(graphics.get('y'))
            width = float(graphics.get('width', 46))
            height = float(graphics.get('height', 17))
        except (TypeError, ValueError):
            continue
        genes = [name.split(':', 1)[-1] for name in (entry.get('name') or '').split()]
        boxes.append((genes, x, y, width, height))
    return boxes


class KeggPathwayRenderer:
    """Colour KEGG pathway diagrams with per-gene scores."""

    def __init__(
        self,
        client: Optional[KeggClient] = None,
        limit: Optional[float] = None,
        cmap: str = 'RdYlGn_r',
    ):
        """
        Args:
            client: KEGG REST client
            limit: Scores are clipped to [-limit, limit] before colouring;
                   None uses the largest absolute score of each request
            cmap: Matplotlib colormap, low scores at the low end
        """
        self.client = client or KeggClient()
        self.limit = limit
        self.cmap = plt.get_cmap(cmap)

    def colour_limit(self, scores: Mapping[str, float]) -> float:
        """Return the symmetric colour range for a set of scores."""
        if self.limit is not None:
            return float(self.limit)
        finite = [abs(v) for v in scores.values() if np.isfinite(v)]
        largest = max(finite, default=0.0)
        return largest if largest > 0 else 1.0

    def render(self, request: PathwayRenderRequest, workdir: Path) -> Path:
        """
        Render one pathway overlay into ``workdir``.

        Args:
            request: Pathway, organism and scores to draw
            workdir: Directory for downloaded and generated files

        Returns:
            Path of the overlay image

        Raises:
            PathwayNotFoundError: If the pathway cannot be resolved or downloaded
            ExternalServiceFailure: If KEGG cannot be reached or returns unusable data
        """
        workdir = Path(workdir)
        kegg_id = self.client.resolve(request.pathway_id, request.organism_code)

        kgml = self.client.get_kgml(kegg_id)
        (workdir / f"{kegg_id}.xml").write_text(kgml)
        image_path = workdir / f"{kegg_id}.png"
        image_path.write_bytes(self.client.get_image(kegg_id))

        try:
            boxes = parse_gene_boxes(kgml)
        except ET.ParseError as e:
            raise ExternalServiceFailure(f"KEGG returned malformed KGML for {kegg_id}: {e}") from e

        output_path = workdir / overlay_file_name(kegg_id, request.suffix)
        try:
            self._draw(image_path, boxes, request.ranked_scores, output_path, kegg_id)
        except (OSError, ValueError) as e:
            raise ExternalServiceFailure(f"KEGG returned an unreadable image for {kegg_id}: {e}") from e
        return output_path

    def _draw(self, image_path, boxes, scores, output_path, title) -> None:
        image = plt.imread(image_path)
        height, width = image.shape[:2]
        dpi = 100
        limit = self.colour_limit(scores)
        norm = Normalize(vmin=-limit, vmax=limit)

        fig = plt.figure(figsize=(width / dpi, height / dpi), dpi=dpi)
        ax = fig.add_axes([0, 0, 1, 1])
        ax.imshow(image)
        coloured = 0
        for genes, x, y, box_width, box_height in boxes:
            values = [scores[g] for g in genes if g in scores]
            if not values:
                continue
            value = float(np.clip(np.mean(values), -limit, limit))
            ax.add_patch(Rectangle(
                (x - box_width / 2, y - box_height / 2),
                box_width,
                box_height,
                facecolor=self.cmap(norm(value)),
                edgecolor='black',
                linewidth=0.5,
                alpha=0.6,
            ))
            coloured += 1
        ax.set_xlim(0, width)
        ax.set_ylim(height, 0)
        ax.axis('off')
        fig.savefig(output_path, dpi=dpi)
        plt.close(fig)
        logger.debug(f"Coloured {coloured} of {len(boxes)} gene boxes in {title}")
