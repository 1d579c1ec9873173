# tablecraft/parity/harness.py
import logging
from concurrent.futures import Future
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Union

from pydantic import BaseModel
from sqlalchemy.engine import Connection
from sqlalchemy.orm import Session

from tablecraft.compiler.context import CompilationContext
from tablecraft.compiler.pipeline import TablePipeline
from tablecraft.core import feature_flags
from tablecraft.core.exceptions import ConfigurationError, DataSourceUnavailableError, HarnessError
from tablecraft.models.descriptor import ParityDiagnostic, RelationSpec
from tablecraft.parity import diff
from tablecraft.parity.inspector import Inspector, redact
from tablecraft.services.legacy_compiler import compile_legacy

logger = logging.getLogger(__name__)


class HarnessResult(BaseModel):
    mode: str
    chosen_result: Dict[str, Any]
    diff_report: Optional[Dict[str, Any]] = None
    severity: Optional[int] = None


def route_label(context: CompilationContext) -> str:
    route = context.route
    return route.route_name or route.request_path or route.route_uri or "n/a"


class ParityHarness:
    """
    Chooses between the legacy compiler and the modular pipeline.

    legacy     only the legacy compiler runs
    hybrid     both run one after the other; the legacy payload is returned and
               the diff is persisted by the inspector
    refactored only the pipeline runs
    """

    def __init__(
            self,
            bind: Union[Connection, Session],
            asset_root: Optional[Union[str, Path]] = None,
            relation_catalog: Sequence[RelationSpec] = (),
            inspector: Optional[Inspector] = None,
            settings: Optional[Any] = None,
            mode: Optional[str] = None
    ):
        self.bind = bind
        self.asset_root = asset_root
        self.relation_catalog = list(relation_catalog)
        self.settings = settings
        self.mode = mode or feature_flags.effective_mode(settings)
        self.inspector = inspector
        self.last_write: Optional[Future] = None

    def _legacy(self, context: CompilationContext) -> Dict[str, Any]:
        return compile_legacy(self.bind, context, self.asset_root, self.relation_catalog)

    def _pipeline(self, context: CompilationContext) -> TablePipeline:
        return TablePipeline(self.bind, self.asset_root, self.relation_catalog)

    def run(self, context: CompilationContext) -> HarnessResult:
        if context.descriptor is None:
            raise ConfigurationError(f"No descriptor registered for table: {context.table_name}")

        if self.mode == "refactored":
            pipeline = self._pipeline(context)
            response = pipeline.run(context)
            return HarnessResult(mode=self.mode, chosen_result=response.to_wire())

        legacy = self._legacy(context)
        if self.mode != "hybrid":
            return HarnessResult(mode=self.mode, chosen_result=legacy)

        pipeline = self._pipeline(context)
        pipeline_output: Optional[Dict[str, Any]] = None
        try:
            pipeline_output = pipeline.run(context).to_wire()
        except Exception as e:
            error = HarnessError(f"Pipeline failed for {context.table_name}: {str(e)}")
            logger.error(f"{str(error)}", exc_info=not isinstance(e, DataSourceUnavailableError))

        report = diff.compare(legacy, pipeline_output)
        score = diff.severity(report)
        allowed = diff.tolerance(self.settings)
        if score > allowed:
            logger.warning(
                f"Parity mismatch on {context.table_name} ({route_label(context)}): "
                f"severity {score} exceeds tolerance {allowed}"
            )
        else:
            logger.debug(f"Parity check on {context.table_name}: severity {score}")

        self._persist(context, report, pipeline)
        return HarnessResult(mode=self.mode, chosen_result=legacy, diff_report=report, severity=score)

    def _persist(self, context: CompilationContext, report: Dict[str, Any], pipeline: TablePipeline) -> None:
        try:
            inspector = self.inspector or Inspector()
            if not inspector.enabled:
                return
            diagnostic = ParityDiagnostic(
                timestamp=datetime.now(timezone.utc).isoformat(),
                route=route_label(context),
                table_name=context.table_name or "unknown",
                diff_summary=report,
                redacted_request_context=redact(context.request_params)
            )
            self.last_write = inspector.store_in_background(diagnostic, pipeline.diagnostics())
        except Exception as e:
            logger.debug(f"Diagnostic not persisted: {str(e)}")
