"""Audit orchestration.

    Validating -> Analyzing -> Combining -> Scoring -> Assembling -> Completed
                                   (any stage) -> Failed

Static and model analysis run concurrently; combining waits for both. The
bytecode fallback skips Combining and Scoring. A run is single-pass: it either
returns a completed AuditReport or raises, with a FailedAudit record attached
to the error when it is an AuditError.
"""

import logging
import threading
import time
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from enum import Enum
from typing import List

from scaudit.bytecode import analyze_bytecode
from scaudit.chain import ChainReader
from scaudit.combine import combine
from scaudit.config import AuditConfig
from scaudit.errors import AuditCancelled, AuditError, UnsupportedChainError
from scaudit.model_analysis import ModelFindingsAdapter
from scaudit.models import AuditReport, ChainContract, FindingSource
from scaudit.persistence import AuditPersistence, AuditRecord
from scaudit.report import (
    assemble,
    assemble_bytecode,
    build_contract_info,
    failed_record,
    generate_audit_id,
)
from scaudit.scoring import ScoreCalculator
from scaudit.static_analysis import StaticFindingsAdapter
from scaudit.validation import InputValidator, looks_like_address

logger = logging.getLogger(__name__)

CANCEL_POLL_SECONDS = 0.25


class AuditStage(str, Enum):
    VALIDATING = "validating"
    ANALYZING = "analyzing"
    COMBINING = "combining"
    SCORING = "scoring"
    ASSEMBLING = "assembling"
    COMPLETED = "completed"
    FAILED = "failed"


_STAGE_ORDER = [
    AuditStage.VALIDATING,
    AuditStage.ANALYZING,
    AuditStage.COMBINING,
    AuditStage.SCORING,
    AuditStage.ASSEMBLING,
    AuditStage.COMPLETED,
]
_TERMINAL = (AuditStage.COMPLETED, AuditStage.FAILED)


class AuditRun:
    """State of one audit invocation. Never shared between runs."""

    def __init__(self, cancel: threading.Event | None = None, audit_id: str | None = None):
        self.audit_id = audit_id or generate_audit_id()
        self.cancel = cancel or threading.Event()
        self.started = time.monotonic()
        self.stage = AuditStage.VALIDATING
        self.stages: List[AuditStage] = [self.stage]

    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started) * 1000)

    def advance(self, stage: AuditStage) -> None:
        if self.stage in _TERMINAL:
            raise RuntimeError(f"Audit {self.audit_id} already {self.stage.value}")
        if stage is not AuditStage.FAILED and _STAGE_ORDER.index(stage) <= _STAGE_ORDER.index(self.stage):
            raise RuntimeError(f"Audit {self.audit_id} cannot move from {self.stage.value} to {stage.value}")
        logger.debug(f"Audit {self.audit_id}: {self.stage.value} -> {stage.value}")
        self.stage = stage
        self.stages.append(stage)

    def check_cancelled(self) -> None:
        if self.cancel.is_set():
            raise AuditCancelled(f"Audit {self.audit_id} cancelled during {self.stage.value}")


class AuditPipeline:
    """Holds read-only collaborators; all per-run state lives in AuditRun."""

    def __init__(
        self,
        config: AuditConfig | None = None,
        static_adapter: StaticFindingsAdapter | None = None,
        model_adapter: ModelFindingsAdapter | None = None,
        chain_reader: ChainReader | None = None,
        persistence: AuditPersistence | None = None,
    ):
        self.config = config or AuditConfig()
        self.validator = InputValidator(self.config.max_contract_size)
        self.static_adapter = static_adapter or StaticFindingsAdapter()
        self.model_adapter = model_adapter or ModelFindingsAdapter(self.config)
        self.chain_reader = chain_reader or ChainReader(self.config)
        self.scorer = ScoreCalculator.from_config(self.config)
        self.persistence = persistence

    # -----------------------------------------------------------------
    # ENTRY POINTS
    # -----------------------------------------------------------------

    def audit(self, source_or_address: str, chain: str = 'ethereum',
              cancel: threading.Event | None = None) -> AuditReport:
        if isinstance(source_or_address, str) and looks_like_address(source_or_address):
            return self.audit_address(source_or_address, chain, cancel=cancel)
        return self.audit_contract(source_or_address, cancel=cancel)

    def audit_contract(self, source_code: str, contract_name: str | None = None,
                       cancel: threading.Event | None = None) -> AuditReport:
        run = AuditRun(cancel)
        size = len(source_code) if isinstance(source_code, str) else 0
        logger.info(f"Starting contract audit {run.audit_id} ({size} chars)")

        try:
            self.validator.validate_source(source_code)
            run.check_cancelled()
            report = self._analyze_source(run, source_code, contract_name=contract_name)
        except Exception as exc:
            self._fail(run, exc)
            raise

        self._persist(report)
        logger.info(f"Contract audit {run.audit_id} completed: score {report.overall_score}, "
                    f"{len(report.findings)} findings, {report.execution_time_ms}ms")
        return report

    def audit_address(self, address: str, chain: str = 'ethereum',
                      cancel: threading.Event | None = None) -> AuditReport:
        run = AuditRun(cancel)
        logger.info(f"Starting address audit {run.audit_id} ({address} on {chain})")

        try:
            self.validator.validate_address(address)
            if chain not in self.config.supported_chains:
                raise UnsupportedChainError(f"Unsupported blockchain: {chain}")
            run.check_cancelled()

            contract = self.chain_reader.fetch(address, chain)
            run.check_cancelled()

            if contract.source_code:
                self.validator.validate_source(contract.source_code)
                report = self._analyze_source(run, contract.source_code, contract=contract)
            else:
                logger.info(f"Audit {run.audit_id}: no verified source, falling back to bytecode analysis")
                report = self._analyze_bytecode(run, contract)
        except Exception as exc:
            self._fail(run, exc, address=address if isinstance(address, str) else None, chain=chain)
            raise

        self._persist(report)
        logger.info(f"Address audit {run.audit_id} completed ({report.type.value}): "
                    f"score {report.overall_score}, {report.execution_time_ms}ms")
        return report

    # -----------------------------------------------------------------
    # STAGES
    # -----------------------------------------------------------------

    def _analyze_source(self, run: AuditRun, source_code: str,
                        contract: ChainContract | None = None,
                        contract_name: str | None = None) -> AuditReport:
        run.advance(AuditStage.ANALYZING)
        # One pool per run, so a slow model call never queues another run's work.
        executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix=f"audit-{run.audit_id[-6:]}")
        try:
            static_future = executor.submit(self.static_adapter.parse, source_code)
            model_future = executor.submit(self.model_adapter.analyze, source_code, None)
            parse_result, analysis = self._gather(run, static_future, model_future)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)
        run.check_cancelled()

        run.advance(AuditStage.COMBINING)
        findings = combine(parse_result.findings, analysis.vulnerabilities)

        run.advance(AuditStage.SCORING)
        scores = self.scorer.score(findings, analysis.code_quality.score)
        run.check_cancelled()

        run.advance(AuditStage.ASSEMBLING)
        info = build_contract_info(parse_result, contract)
        if contract_name:
            info = info.model_copy(update={'name': contract_name})
        report = assemble(
            run.audit_id,
            info,
            findings,
            scores,
            run.elapsed_ms(),
            analysis=analysis,
            finding_sources={
                FindingSource.STATIC.value: len(parse_result.findings),
                FindingSource.MODEL.value: len(analysis.vulnerabilities),
            },
        )
        run.advance(AuditStage.COMPLETED)
        return report

    def _analyze_bytecode(self, run: AuditRun, contract: ChainContract) -> AuditReport:
        run.advance(AuditStage.ANALYZING)
        analysis = analyze_bytecode(contract.bytecode)
        run.check_cancelled()

        run.advance(AuditStage.ASSEMBLING)
        report = assemble_bytecode(
            run.audit_id,
            contract,
            analysis,
            run.elapsed_ms(),
            default_score=self.config.bytecode_default_score,
        )
        run.advance(AuditStage.COMPLETED)
        return report

    def _gather(self, run: AuditRun, *futures: Future) -> list:
        """Wait for every future, polling for cancellation. The first failure
        wins; the remaining futures are cancelled best-effort and abandoned."""
        pending = set(futures)
        try:
            while pending:
                run.check_cancelled()
                done, pending = wait(pending, timeout=CANCEL_POLL_SECONDS, return_when=FIRST_EXCEPTION)
                for future in done:
                    exc = future.exception()
                    if exc is not None:
                        raise exc
        except BaseException:
            for future in futures:
                future.cancel()
            raise
        return [future.result() for future in futures]

    # -----------------------------------------------------------------
    # FAILURE + PERSISTENCE
    # -----------------------------------------------------------------

    def _fail(self, run: AuditRun, exc: Exception, address: str | None = None, chain: str | None = None) -> None:
        stage = run.stage
        if stage not in _TERMINAL:
            run.advance(AuditStage.FAILED)
        record = failed_record(run.audit_id, exc, run.elapsed_ms(), contract_address=address, chain=chain)
        if isinstance(exc, AuditError):
            exc.record = record
            logger.error(f"Audit {run.audit_id} failed during {stage.value}: {exc.code}: {exc}")
        else:
            logger.exception(f"Audit {run.audit_id} failed during {stage.value} with an unexpected error")
        self._persist(record)

    def _persist(self, record: AuditRecord) -> None:
        if self.persistence is None:
            return
        try:
            self.persistence.log(record)
        except Exception as e:
            logger.error(f"Failed to persist audit {record.audit_id}: {e}")
