"""
Rendering of pathway overlays into one combined document.
"""

import logging
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Mapping, Optional, Protocol, Sequence, Tuple

import matplotlib.pyplot as plt
from matplotlib.backends.backend_pdf import PdfPages
from tqdm.auto import tqdm

from .errors import ExternalServiceFailure, PathwayNotFoundError
from .models import PathwayRenderRequest

logger = logging.getLogger(__name__)


class PathwayRenderer(Protocol):
    """Anything that can draw a pathway overlay into a working directory."""

    def render(self, request: PathwayRenderRequest, workdir: Path) -> Path:
        ...


@dataclass
class PathwayRenderSummary:
    """Outcome of one orchestrator run."""

    rendered: List[Tuple[str, Path]] = field(default_factory=list)
    skipped: List[Tuple[str, str]] = field(default_factory=list)
    combined: Optional[Path] = None


def merge_images(image_paths: Sequence[Path], output_path: Path) -> Path:
    """
    Merge images into a multi-page PDF, one image per page.

    Args:
        image_paths: Images in page order
        output_path: PDF file to write

    Returns:
        Path of the PDF
    """
    with PdfPages(output_path) as pdf:
        for image_path in image_paths:
            image = plt.imread(image_path)
            height, width = image.shape[:2]
            fig = plt.figure(figsize=(width / 100, height / 100), dpi=100)
            ax = fig.add_axes([0, 0, 1, 1])
            ax.imshow(image)
            ax.axis('off')
            pdf.savefig(fig)
            plt.close(fig)
    return Path(output_path)


class PathwayImageOrchestrator:
    """
    Render a sequence of pathways and collect the images.

    Each pathway is drawn inside its own temporary directory, so the
    renderer's downloads and intermediate files are removed whether the
    pathway succeeds or fails. Unresolvable pathways are logged and skipped.
    """

    def __init__(self, renderer: PathwayRenderer, organism_code: str, suffix: str = 'pathview'):
        """
        Args:
            renderer: Pathway-overlay renderer
            organism_code: KEGG organism code (``hsa`` or ``mmu``)
            suffix: Suffix the renderer puts in its output file names
        """
        self.renderer = renderer
        self.organism_code = organism_code
        self.suffix = suffix

    def render_all(
        self,
        pathway_ids: Sequence[str],
        scores: Mapping[str, float],
        output_dir: Path,
        merge: bool = True,
        combined_name: Optional[str] = None,
    ) -> PathwayRenderSummary:
        """
        Render every requested pathway.

        Args:
            pathway_ids: Pathway ids or names, in output order
            scores: Canonical id to score, drawn on every pathway
            output_dir: Directory receiving the renamed images or the merged PDF
            merge: Merge the images into one PDF and delete the individual files
            combined_name: File name of the merged PDF

        Returns:
            Summary of rendered and skipped pathways
        """
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        summary = PathwayRenderSummary()

        for pathway_id in tqdm(pathway_ids, desc="Rendering pathways", unit="pathway", leave=False):
            request = PathwayRenderRequest(
                pathway_id=pathway_id,
                organism_code=self.organism_code,
                ranked_scores=scores,
                suffix=self.suffix,
            )
            with tempfile.TemporaryDirectory(prefix='degenrich-pathway-') as workdir:
                try:
                    produced = Path(self.renderer.render(request, Path(workdir)))
                except PathwayNotFoundError as e:
                    logger.warning(f"Skipping pathway {pathway_id}: {e}")
                    summary.skipped.append((pathway_id, str(e)))
                    continue
                except ExternalServiceFailure as e:
                    logger.warning(f"Skipping pathway {pathway_id} after renderer failure: {e}")
                    summary.skipped.append((pathway_id, str(e)))
                    continue

                target = output_dir / f"{len(summary.rendered) + 1:02d}_{produced.name}"
                shutil.move(str(produced), str(target))
                summary.rendered.append((pathway_id, target))

        logger.info(
            f"Rendered {len(summary.rendered)} of {len(pathway_ids)} pathways"
            + (f"; skipped {len(summary.skipped)}" if summary.skipped else "")
        )

        if merge and summary.rendered:
            combined = output_dir / (combined_name or f"{self.organism_code}_{self.suffix}.pdf")
            merge_images([path for _, path in summary.rendered], combined)
            for _, path in summary.rendered:
                path.unlink()
            summary.combined = combined
            logger.info(f"Merged pathway images into {combined}")

        return summary
