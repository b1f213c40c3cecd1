"""Error taxonomy for the merge pipeline.

Each error carries the HTTP-equivalent ``status_code`` and a stable ``code``
so front-ends can build a precise response without inspecting messages.
"""

from dataclasses import asdict, dataclass


class MergeError(RuntimeError):
    """Base class for all merge pipeline failures."""

    status_code = 500
    code = "merge_failed"

    def to_dict(self) -> dict[str, object]:
        return {"code": self.code, "message": str(self)}


class InputContractError(MergeError):
    """The request cannot be served as given; the caller has to change it."""

    status_code = 400
    code = "invalid_request"


class TemplateNotFoundError(InputContractError):
    status_code = 404
    code = "template_not_found"

    def __init__(self, template_id: str) -> None:
        super().__init__(f"Template not found: {template_id}")
        self.template_id = template_id


class UnsupportedTemplateTypeError(InputContractError):
    status_code = 415
    code = "unsupported_template_type"

    def __init__(self, name: str) -> None:
        super().__init__(f"Unsupported template type for {name!r}. Use .docx or .html")
        self.name = name


class UnsupportedOutputTypeError(InputContractError):
    code = "unsupported_output_type"

    def __init__(self, output_type: str, allowed: list[str]) -> None:
        super().__init__(f"outputType must be one of {', '.join(allowed)} for this template (got {output_type!r})")
        self.output_type = output_type
        self.allowed = allowed


class MissingFieldsError(InputContractError):
    status_code = 422
    code = "missing_fields"

    def __init__(self, missing: list[str]) -> None:
        super().__init__(f"Missing required fields: {', '.join(missing)}")
        self.missing = missing

    def to_dict(self) -> dict[str, object]:
        body = super().to_dict()
        body["missing"] = list(self.missing)
        return body


@dataclass(frozen=True)
class TemplateDiagnostic:
    id: str
    explanation: str
    tag: str | None = None
    part: str | None = None
    offset: int | None = None

    def to_dict(self) -> dict[str, object]:
        return asdict(self)


class TemplateParseError(MergeError):
    """The template itself is defective (bad delimiters, unresolved tags)."""

    status_code = 422
    code = "template_parse_error"

    def __init__(self, diagnostics: list[TemplateDiagnostic]) -> None:
        super().__init__("TEMPLATE_PARSE_ERROR")
        self.diagnostics = diagnostics

    def to_dict(self) -> dict[str, object]:
        body = super().to_dict()
        body["details"] = [d.to_dict() for d in self.diagnostics]
        return body


class TemplateLintError(MergeError):
    """An uploaded template was rejected by the linter."""

    status_code = 422
    code = "template_rejected"

    def __init__(self, message: str, details: list[object]) -> None:
        super().__init__(message)
        self.details = details

    def to_dict(self) -> dict[str, object]:
        body = super().to_dict()
        body["details"] = [d.to_dict() if isinstance(d, TemplateDiagnostic) else d for d in self.details]
        return body


class ExternalToolError(MergeError):
    """An external conversion engine failed."""

    status_code = 502
    code = "conversion_failed"


class ProcessStartError(ExternalToolError):
    code = "process_start_failed"

    def __init__(self, command: str, cause: OSError) -> None:
        super().__init__(f"could not start {command}: {cause}")
        self.command = command


class ProcessExitError(ExternalToolError):
    code = "process_failed"

    def __init__(self, command: str, exit_code: int, stdout: str, stderr: str) -> None:
        super().__init__(f"{command} exit code {exit_code}\n{stderr or stdout}".strip())
        self.command = command
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr


class IntermediateArtifactMissingError(ExternalToolError):
    code = "intermediate_missing"

    def __init__(self, stage: str, path: str) -> None:
        super().__init__(f"stage {stage!r} did not produce {path}")
        self.stage = stage
        self.path = path


class BrowserRenderError(ExternalToolError):
    code = "browser_render_failed"


class ConversionTimeoutError(ExternalToolError):
    status_code = 504
    code = "conversion_timeout"

    def __init__(self, what: str, timeout: float) -> None:
        super().__init__(f"{what} did not finish within {timeout:g}s")
        self.timeout = timeout
