"""Error taxonomy for the schema pipeline.

Setup failures (:class:`CredentialError`, :class:`SitemapError`) end a run and
send it back to the credentials stage.  :class:`NetworkError` and
:class:`AiError` are raised by per-page operations and are caught at the batch
boundary, where they become status fields on the affected
:class:`~schemapilot.models.page.PageRecord`.
"""


class PipelineError(Exception):
    """Base class for every error raised by the pipeline services."""


class CredentialError(PipelineError):
    """WordPress credentials or the AI provider key were rejected."""


class SitemapError(PipelineError):
    """The sitemap could not be fetched, parsed, or listed no URLs."""


class NetworkError(PipelineError):
    """Both the direct request and the CORS-relay retry failed."""


class AiError(PipelineError):
    """The AI provider call failed or returned unusable output."""


class StageError(PipelineError):
    """An operation was requested from a wizard stage that does not allow it."""
