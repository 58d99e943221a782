"""
Request-scoped tracing for GeoScore evaluations.

A thread-local TraceContext records:
  - Per-stage timing (geocode, places, transit, scoring, cache)
  - Per-outbound-call timing (endpoint, elapsed_ms, HTTP status, provider status)
  - An end-of-request summary line

Usage:
    from geo_trace import TraceContext, get_trace, set_trace, clear_trace

    ctx = TraceContext(trace_id=request_id)
    set_trace(ctx)
    with ctx.stage("geocode"):
        ...
    ctx.log_summary()
    clear_trace()

API clients call ``get_trace()`` and record each request if a trace is active.
"""

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class APICallRecord:
    """One outbound HTTP call to the maps provider."""
    endpoint: str         # "geocode", "places_nearby", ...
    elapsed_ms: int
    status_code: int
    provider_status: str = ""   # Google "OK", "ZERO_RESULTS", ...
    stage: str = ""


@dataclass
class StageRecord:
    stage_name: str
    elapsed_ms: int = 0
    api_calls_made: int = 0
    error_class: str = ""
    error_message: str = ""


@dataclass
class TraceContext:
    """Accumulates timing data for a single evaluation request."""
    trace_id: str
    request_start: float = field(default_factory=time.time)
    stages: List[StageRecord] = field(default_factory=list)
    api_calls: List[APICallRecord] = field(default_factory=list)
    cache_hit: bool = False
    # Stage names are tracked per thread: places and transit run concurrently
    # against the same context.
    _stage_local: threading.local = field(
        default_factory=threading.local, repr=False, compare=False,
    )

    @property
    def _current_stage(self) -> str:
        return getattr(self._stage_local, "name", "")

    @_current_stage.setter
    def _current_stage(self, name: str):
        self._stage_local.name = name

    @contextmanager
    def stage(self, name: str) -> Iterator[None]:
        """Time the enclosed block as stage *name*.

        Exceptions are recorded on the stage and re-raised.
        """
        outer_stage = self._current_stage
        self._current_stage = name
        t0 = time.time()
        error_class = error_message = ""
        try:
            yield
        except Exception as e:
            error_class, error_message = type(e).__name__, str(e)
            raise
        finally:
            self._current_stage = outer_stage
            rec = StageRecord(
                stage_name=name,
                elapsed_ms=int((time.time() - t0) * 1000),
                api_calls_made=sum(1 for c in self.api_calls if c.stage == name),
                error_class=error_class,
                error_message=error_message,
            )
            self.stages.append(rec)
            err_info = f" err={error_class}: {error_message}" if error_class else ""
            logger.info(
                "  [stage] trace=%s %s %s %dms api_calls=%d%s",
                self.trace_id,
                name,
                "ERR" if error_class else "OK",
                rec.elapsed_ms,
                rec.api_calls_made,
                err_info,
            )

    def record_api_call(
        self,
        endpoint: str,
        elapsed_ms: int,
        status_code: int,
        provider_status: str = "",
    ):
        self.api_calls.append(APICallRecord(
            endpoint=endpoint,
            elapsed_ms=elapsed_ms,
            status_code=status_code,
            provider_status=provider_status,
            stage=self._current_stage,
        ))
        logger.info(
            "  [api] trace=%s stage=%s ep=%s ms=%d http=%d provider=%s",
            self.trace_id,
            self._current_stage or "-",
            endpoint,
            elapsed_ms,
            status_code,
            provider_status,
        )

    def summary_dict(self) -> Dict[str, Any]:
        errored = [s for s in self.stages if s.error_class]
        if errored:
            outcome = "error"
        elif self.cache_hit:
            outcome = "cached"
        elif self.stages:
            outcome = "success"
        else:
            outcome = "empty"

        return {
            "trace_id": self.trace_id,
            "total_elapsed_ms": int((time.time() - self.request_start) * 1000),
            "total_api_calls": len(self.api_calls),
            "stages": [
                {
                    "stage": s.stage_name,
                    "elapsed_ms": s.elapsed_ms,
                    "api_calls": s.api_calls_made,
                    "error": f"{s.error_class}: {s.error_message}" if s.error_class else None,
                }
                for s in self.stages
            ],
            "final_outcome": outcome,
        }

    def log_summary(self):
        """Emit a single structured summary log line."""
        s = self.summary_dict()
        logger.info(
            "[trace-summary] trace=%s total_ms=%d api_calls=%d stages=%d outcome=%s",
            s["trace_id"],
            s["total_elapsed_ms"],
            s["total_api_calls"],
            len(s["stages"]),
            s["final_outcome"],
        )


_trace_local = threading.local()


def get_trace() -> Optional[TraceContext]:
    """Get the current thread's trace context, or None."""
    return getattr(_trace_local, "ctx", None)


def set_trace(ctx: Optional[TraceContext]):
    _trace_local.ctx = ctx


def clear_trace():
    _trace_local.ctx = None


@contextmanager
def traced_stage(name: str) -> Iterator[None]:
    """Run a stage under the active trace, or untimed if none is set."""
    trace = get_trace()
    if trace is None:
        yield
        return
    with trace.stage(name):
        yield
