"""
Fatal pipeline errors.

Every fatal condition is raised as a ``PipelineError`` carrying the stage
that failed, so the CLI can report it and exit non-zero.  Degraded
outcomes (runtime-linkage fallback, ABI audit findings) are never raised.
"""


class PipelineError(RuntimeError):
    """A pipeline stage failed and the build must abort."""

    stage = "pipeline"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigError(PipelineError):
    """The profile or environment is inconsistent."""

    stage = "config"


class CompileError(PipelineError):
    """A translation unit failed to compile or the archive could not be made."""

    stage = "compile"


class BindingError(PipelineError):
    """The header could not be preprocessed, parsed or written out as bindings."""

    stage = "bindgen"
