"""
Deliberation Council - the main orchestrator
"""
import asyncio
from typing import Any, Dict, List, Optional, Set, Tuple

from loguru import logger

from .anonymizer import Anonymizer
from .collector import Collector
from .config import build_backend_manager
from .consensus import ChairmanSynthesizer
from .costs import CostController, CostEstimate, estimate_session_cost
from .errors import DeliberationFailed, ErrorKind, InvalidDeliberationRequest
from .models import MIN_PARTICIPANTS, CouncilMember, ModelManager
from .persistence import AuditSink, CompositeSink, CouncilDatabase, JsonAuditSink, MemoryAuditSink
from .review import PeerReviewer
from .session import DeliberationSession, SessionState, SessionStore
from .voting import BordaScheme, RankAggregator


class DeliberationCouncil:
    """
    Runs deliberation sessions: collect, anonymize, peer review, aggregate,
    synthesize.

    Every session runs under one wall-clock deadline covering all stages.
    When it expires the session fails with TIMEOUT and any backend calls
    still in flight are cancelled.
    """

    def __init__(
        self,
        config: Dict[str, Any],
        model_manager: Optional[ModelManager] = None,
        sink: Optional[AuditSink] = None,
        store: Optional[SessionStore] = None,
        cost_controller: Optional[CostController] = None,
        anonymizer: Optional[Anonymizer] = None
    ):
        self.config = config
        council_cfg = config.get("council", {})

        self.model_manager = model_manager or ModelManager(
            default_temperature=council_cfg.get("collection_temperature", 0.7),
            default_max_tokens=council_cfg.get("max_tokens", 2048)
        )
        self.sink = sink or MemoryAuditSink()
        self.store = store or SessionStore(council_cfg.get("max_sessions", 1000))
        self.cost_controller = cost_controller

        max_call_timeout = council_cfg.get("max_call_timeout", 60.0)
        self.session_deadline = council_cfg.get("session_deadline", 300.0)

        try:
            scheme = BordaScheme(council_cfg.get("borda_scheme", "linear"))
        except ValueError:
            logger.warning(f"Unknown Borda scheme {council_cfg.get('borda_scheme')!r}, using linear")
            scheme = BordaScheme.LINEAR

        self.collector = Collector(
            max_call_timeout=max_call_timeout,
            temperature=council_cfg.get("collection_temperature")
        )
        self.anonymizer = anonymizer or Anonymizer(redact=council_cfg.get("redact_identities", True))
        self.reviewer = PeerReviewer(
            self.anonymizer,
            max_call_timeout=max_call_timeout,
            temperature=council_cfg.get("review_temperature", 0.3)
        )
        self.aggregator = RankAggregator(scheme)
        self.synthesizer = ChairmanSynthesizer(
            self.model_manager,
            designated_chairman=council_cfg.get("chairman"),
            max_call_timeout=max_call_timeout,
            temperature=council_cfg.get("synthesis_temperature", 0.5)
        )

        self._tasks: Set[asyncio.Task] = set()

    @classmethod
    async def from_config(cls, config: Dict[str, Any]) -> "DeliberationCouncil":
        """Connect backends and sinks described by ``config``."""
        budget_cfg = config.get("budget", {})
        cost_controller = CostController(
            per_session=budget_cfg.get("per_session", 2.00),
            daily=budget_cfg.get("daily", 10.00),
            monthly=budget_cfg.get("monthly", 200.00),
            enabled=budget_cfg.get("enabled", True)
        )
        backend_manager = await build_backend_manager(config, usage_hook=cost_controller.record_usage)

        council_cfg = config.get("council", {})
        model_manager = ModelManager(
            backend_manager,
            default_temperature=council_cfg.get("collection_temperature", 0.7),
            default_max_tokens=council_cfg.get("max_tokens", 2048)
        )

        persistence_cfg = config.get("persistence", {})
        sinks: List[AuditSink] = []
        if persistence_cfg.get("db_path"):
            database = CouncilDatabase(persistence_cfg["db_path"])
            await database.initialize()
            sinks.append(database)
        if persistence_cfg.get("output_dir"):
            sinks.append(JsonAuditSink(persistence_cfg["output_dir"]))
        sink: Optional[AuditSink] = None
        if len(sinks) == 1:
            sink = sinks[0]
        elif sinks:
            sink = CompositeSink(sinks)

        council = cls(config, model_manager, sink=sink, cost_controller=cost_controller)
        logger.info(f"Deliberation Council initialized with backends: {', '.join(backend_manager.backends) or 'none'}")
        return council

    # ------------------------------------------------------------------
    # Requests

    def estimate(
        self,
        question: str,
        participants: List[str],
        chairman_model_id: Optional[str] = None
    ) -> CostEstimate:
        chairman = chairman_model_id or self.synthesizer.designated_chairman
        return estimate_session_cost(question, participants, chairman)

    def create_session(
        self,
        question: str,
        participants: List[str],
        chairman_model_id: Optional[str] = None
    ) -> Tuple[DeliberationSession, List[CouncilMember]]:
        """
        Validate a request and register its session.

        Raises ``InvalidDeliberationRequest`` or ``BudgetExceeded`` before any
        session exists.
        """
        question = (question or "").strip()
        if not question:
            raise InvalidDeliberationRequest("Question must not be empty")

        members = self.model_manager.resolve_participants(list(participants))
        if chairman_model_id is not None:
            self.model_manager.get_member(chairman_model_id)

        session = DeliberationSession(question, participants, chairman_model_id)
        if self.cost_controller:
            self.cost_controller.reserve(session.id, self.estimate(question, participants, chairman_model_id))

        self.store.add(session)
        logger.info(f"Session {session.id} created with {len(members)} participants")
        return session, members

    async def deliberate(
        self,
        question: str,
        participants: List[str],
        chairman_model_id: Optional[str] = None
    ) -> DeliberationSession:
        """Run a whole deliberation and return the terminal session."""
        session, members = self.create_session(question, participants, chairman_model_id)
        await self.run(session, members)
        return session

    def submit(
        self,
        question: str,
        participants: List[str],
        chairman_model_id: Optional[str] = None
    ) -> str:
        """Start a deliberation in the background and return its session id."""
        session, members = self.create_session(question, participants, chairman_model_id)
        task = asyncio.create_task(self.run(session, members), name=f"deliberation-{session.id}")
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return session.id

    def _task_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.opt(exception=task.exception()).error(f"Background task {task.get_name()} crashed")

    def status(self, session_id: str) -> Optional[Dict[str, Any]]:
        """Externally visible status, or None for an unknown id."""
        session = self.store.get(session_id)
        return session.status_view() if session else None

    async def wait(self, session_id: str) -> Optional[Dict[str, Any]]:
        """Wait for a submitted session to finish and return its status."""
        for task in list(self._tasks):
            if task.get_name() == f"deliberation-{session_id}":
                await asyncio.shield(task)
        return self.status(session_id)

    # ------------------------------------------------------------------
    # Pipeline

    async def run(self, session: DeliberationSession, members: List[CouncilMember]) -> Dict[str, Any]:
        """
        Drive ``session`` to a terminal state, record it, and release its
        working state. Returns the audit trail that was recorded.

        Cancelling the task that runs this ends the session as
        FAILED(TIMEOUT); the trail is still recorded before the
        cancellation propagates.
        """
        try:
            await asyncio.wait_for(self._pipeline(session, members), timeout=self.session_deadline)
        except asyncio.TimeoutError:
            logger.error(f"Session {session.id}: deadline of {self.session_deadline}s expired in {session.state.value}")
            session.fail(ErrorKind.TIMEOUT, f"Session deadline of {self.session_deadline}s expired")
        except DeliberationFailed as e:
            logger.error(f"Session {session.id} failed: {e}")
            session.fail(e.reason, e.message)
        except asyncio.CancelledError:
            logger.error(f"Session {session.id}: cancelled in {session.state.value}")
            if not session.is_terminal:
                session.fail(ErrorKind.TIMEOUT, "Session cancelled before completion")
            await self._close(session)
            raise

        return await self._close(session)

    async def _close(self, session: DeliberationSession) -> Dict[str, Any]:
        trail = session.audit_trail()
        await self._record(session.id, trail)
        session.release_working_state()
        if self.cost_controller:
            self.cost_controller.release(session.id)
        return trail

    async def _pipeline(self, session: DeliberationSession, members: List[CouncilMember]):
        # Stage 1: collection
        collection = await self.collector.collect(session.question, members)
        session.responses = collection.responses
        successful = collection.successful
        if len(successful) < MIN_PARTICIPANTS:
            raise DeliberationFailed(
                ErrorKind.INSUFFICIENT_QUORUM,
                f"{len(successful)} of {len(members)} participants answered; {MIN_PARTICIPANTS} required"
            )

        # Stage 2: anonymization and blind peer review
        anonymized = self.anonymizer.anonymize(collection.responses, identities=session.participants)
        session.set_mapping(anonymized.mapping)
        session.entries = anonymized.entries
        session.transition(SessionState.ANONYMIZED)

        session.transition(SessionState.REVIEWING)
        answered = {r.model_id for r in successful}
        judges = [m for m in members if m.name in answered]
        review_question = self.anonymizer.scrub(session.question, session.participants)
        review = await self.reviewer.review(review_question, session.entries, judges)
        session.rankings = review.rankings
        session.rejected_rankings = review.rejected
        session.failed_judges = review.failed_judges

        # Stage 3: aggregation
        session.aggregate = self.aggregator.aggregate(session.rankings, session.mapping_view())
        session.transition(SessionState.AGGREGATED)
        leader = session.aggregate.scored_models[0]
        logger.info(
            f"Session {session.id}: aggregated {session.aggregate.num_judges} rankings, "
            f"leader {leader.model_id} ({leader.borda_score} pts)"
        )

        # Stage 4: synthesis
        session.transition(SessionState.SYNTHESIZING)
        session.result = await self.synthesizer.synthesize(session, session.aggregate, session.responses)
        session.transition(SessionState.COMPLETE)
        logger.info(f"Session {session.id} complete; chairman {session.result.chairman_model_id}")

    async def _record(self, session_id: str, trail: Dict[str, Any]):
        try:
            await self.sink.record(session_id, trail)
        except Exception as e:
            logger.error(f"Session {session_id}: audit sink failed: {e}")

    async def shutdown(self):
        """Cancel running sessions and close backends and sinks."""
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        await self.sink.close()
        await self.model_manager.shutdown()
        logger.info("Deliberation Council shut down")
