"""Exception types raised by the enrichment report pipeline."""


class DegEnrichError(Exception):
    """Base class for pipeline errors."""


class MissingResourceError(DegEnrichError, FileNotFoundError):
    """An input file or sheet does not exist."""


class MalformedDataError(DegEnrichError, ValueError):
    """A required column is missing or cannot be parsed."""


class ExternalServiceFailure(DegEnrichError, RuntimeError):
    """The translation, enrichment or rendering service itself failed."""


class PathwayNotFoundError(ExternalServiceFailure):
    """A pathway id could not be resolved by the pathway renderer."""

    def __init__(self, pathway_id: str, message: str = None):
        self.pathway_id = pathway_id
        super().__init__(message or f"Pathway not found: {pathway_id}")
