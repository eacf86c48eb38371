"""
Enrollment and authentication decision engine for the HeartID core.

The engine owns the enrollment pipeline (validate, extract, seal, store)
and the per-identity authentication session state machine. Every
collaborator is passed to the constructor; the engine keeps no global
state and touches raw samples only through the validator and extractor.

Failure handling follows a fixed taxonomy:

* capture-quality problems become ``RetryRequested`` and never count
  toward lockout;
* low similarity becomes ``Denied`` and counts toward lockout;
* storage and cryptography failures become ``Error`` outcomes, are logged
  at error level, and commit nothing;
* protocol misuse (enrolling or deleting during an open session) raises.
"""

import threading
from contextlib import contextmanager
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, Iterator, Optional, Set, Union

import structlog

from .data_models import (
    Approved,
    AttemptRecord,
    AuthenticationOutcome,
    Denied,
    EnrollmentResult,
    Error,
    RetryRequested,
    SampleBatch,
    SecurityLevel,
    Template,
)
from .exceptions import (
    ConcurrentAuthenticationError,
    ConfigurationError,
    FeatureExtractionError,
    HeartIdError,
    OpenFailedError,
    SessionClosedError,
    SessionError,
    SessionExpiredError,
    TemplateNotFoundError,
)
from .feature_extraction import FeatureExtractor
from .policy import SecurityPolicy, load_policy
from .quality_assessment import SignalQualityValidator
from .session import AuthenticationSession, LockoutTracker, SessionState
from .similarity import SimilarityScorer
from .template_codec import TemplateRepository
from .utils import generate_template_id, timer, utc_now

# Initialize structured logger
logger = structlog.get_logger(__name__)

NO_ENROLLMENT = "no enrollment found"
MAX_ATTEMPTS_REACHED = "max attempts reached"
TEMPLATE_TAMPERED = "template corrupted or tampered"


class EngineState(str, Enum):
    IDLE = "idle"
    ENROLLING = "enrolling"
    ENROLLED = "enrolled"
    AUTHENTICATING = "authenticating"


class AuthenticationEngine:
    """
    Per-identity enrollment and authentication state machine.

    Parameters
    ----------
    repository : TemplateRepository
        Sealed template store.
    extractor : FeatureExtractor, optional
        Feature extractor shared by enrollment and authentication.
    scorer : SimilarityScorer, optional
        Similarity scorer.
    policy_provider : Callable[[], SecurityPolicy], default=load_policy
        Returns the policy; called once per enrollment and once per session.
    clock : Callable[[], datetime], optional
        Returns the current timezone-aware time. Defaults to UTC now.
    lockout_tracker : LockoutTracker, optional
        Cooldown bookkeeping. Created from the first loaded policy when
        omitted.

    Examples
    --------
    >>> engine = AuthenticationEngine(repository)
    >>> engine.complete_enrollment("alice", enrollment_batch).success
    True
    >>> engine.complete_authentication("alice", capture_batch)
    Approved(confidence=0.93)
    """

    def __init__(
        self,
        repository: TemplateRepository,
        extractor: Optional[FeatureExtractor] = None,
        scorer: Optional[SimilarityScorer] = None,
        policy_provider: Callable[[], SecurityPolicy] = load_policy,
        clock: Optional[Callable[[], datetime]] = None,
        lockout_tracker: Optional[LockoutTracker] = None,
    ) -> None:
        self.repository = repository
        self.extractor = extractor or FeatureExtractor()
        self.scorer = scorer or SimilarityScorer()
        self.policy_provider = policy_provider
        self.clock = clock or utc_now
        self.lockout_tracker = lockout_tracker

        self._sessions: Dict[str, AuthenticationSession] = {}
        self._enrolling: Set[str] = set()
        self._identity_locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    def _acquire(self, identity_id: str, blocking: bool = True) -> Optional[threading.Lock]:
        """Acquire the identity's current lock, or return None when busy and not blocking."""
        while True:
            with self._registry_lock:
                lock = self._identity_locks.get(identity_id)
                if lock is None:
                    lock = self._identity_locks[identity_id] = threading.Lock()
            if not lock.acquire(blocking=blocking):
                return None
            with self._registry_lock:
                if self._identity_locks.get(identity_id) is lock:
                    return lock
            # Pruned while we waited; retry with the replacement
            lock.release()

    @contextmanager
    def _holding(self, identity_id: str) -> Iterator[None]:
        lock = self._acquire(identity_id)
        try:
            yield
        finally:
            lock.release()

    def _tracker(self, policy: SecurityPolicy) -> LockoutTracker:
        with self._registry_lock:
            if self.lockout_tracker is None:
                self.lockout_tracker = LockoutTracker(policy.lockout_periods)
            return self.lockout_tracker

    def _record_lockout(self, policy: SecurityPolicy, identity_id: str, now: datetime) -> None:
        try:
            self._tracker(policy).record_lockout(identity_id, now)
        except HeartIdError as e:
            # The in-memory cooldown still applies to this engine
            logger.error("Lockout state could not be saved", identity_id=identity_id, **e.to_dict())

    def _release_lock(self, identity_id: str) -> None:
        """Forget the identity's lock once nothing holds it or needs it."""
        with self._registry_lock:
            lock = self._identity_locks.get(identity_id)
            if lock is None or not lock.acquire(blocking=False):
                return
            if identity_id not in self._sessions and identity_id not in self._enrolling:
                del self._identity_locks[identity_id]
            lock.release()

    def _open_session(self, identity_id: str) -> Optional[AuthenticationSession]:
        session = self._sessions.get(identity_id)
        if session is not None and not session.is_terminal:
            return session
        return None

    def _refuse_during_session(self, identity_id: str, operation: str) -> None:
        session = self._open_session(identity_id)
        if session is not None:
            raise SessionError(
                f"Cannot {operation} while an authentication session is active",
                session_id=session.session_id,
            )

    # ------------------------------------------------------------------
    # Enrollment
    # ------------------------------------------------------------------

    def begin_enrollment(self, identity_id: str) -> EngineState:
        """
        Mark an identity as enrolling.

        Raises
        ------
        SessionError
            If an authentication session is active for the identity.
        """
        with self._holding(identity_id):
            self._refuse_during_session(identity_id, "enroll")
            self._enrolling.add(identity_id)

        logger.info("Enrollment started", identity_id=identity_id)
        return EngineState.ENROLLING

    @timer
    def complete_enrollment(
        self,
        identity_id: str,
        batch: SampleBatch,
        security_level: Optional[Union[SecurityLevel, str]] = None,
        replace: bool = False,
    ) -> EnrollmentResult:
        """
        Validate a capture and store the resulting template.

        Parameters
        ----------
        identity_id : str
            Identity to enroll.
        batch : SampleBatch
            Enrollment capture.
        security_level : SecurityLevel or str, optional
            Level assigned to the template. Defaults to the policy default.
        replace : bool, default=False
            Atomically supersede an existing template.

        Returns
        -------
        EnrollmentResult
            Success with the template id, or failure with a reason. A failed
            enrollment never writes a template.

        Raises
        ------
        SessionError
            If an authentication session is active for the identity.
        ConfigurationError
            If the policy cannot be loaded or the level is unknown.
        """
        lock = self._acquire(identity_id, blocking=False)
        if lock is None:
            return EnrollmentResult(success=False, message="operation already in progress")

        try:
            self._refuse_during_session(identity_id, "enroll")
            self._enrolling.add(identity_id)
            return self._enroll(identity_id, batch, security_level, replace)
        finally:
            self._enrolling.discard(identity_id)
            lock.release()

    def _enroll(
        self,
        identity_id: str,
        batch: SampleBatch,
        security_level: Optional[Union[SecurityLevel, str]],
        replace: bool,
    ) -> EnrollmentResult:
        policy = self.policy_provider()
        try:
            level = (
                SecurityLevel(security_level)
                if security_level is not None
                else policy.default_security_level
            )
        except ValueError:
            raise ConfigurationError(
                f"Unknown security level '{security_level}'", config_value=str(security_level)
            )

        try:
            already_enrolled = self.repository.exists(identity_id)
        except HeartIdError as e:
            logger.error("Enrollment storage check failed", identity_id=identity_id, **e.to_dict())
            return EnrollmentResult(success=False, message=e.message)
        if already_enrolled and not replace:
            return EnrollmentResult(
                success=False, message="identity already enrolled; pass replace=True to re-enroll"
            )

        report = SignalQualityValidator(policy.quality).validate(batch)
        if not report.is_acceptable:
            logger.info(
                "Enrollment rejected",
                identity_id=identity_id,
                failure_reason=report.failure_reason.value,
            )
            return EnrollmentResult(
                success=False, quality_report=report, message=report.summary
            )

        try:
            vector = self.extractor.extract(batch)
        except FeatureExtractionError as e:
            logger.warning("Enrollment feature extraction failed", identity_id=identity_id, error=e.message)
            return EnrollmentResult(success=False, quality_report=report, message=e.message)

        template = Template(
            template_id=generate_template_id(identity_id),
            identity_id=identity_id,
            created_at=self.clock(),
            feature_vector=vector,
            security_level=level,
        )

        try:
            self.repository.save(template)
        except HeartIdError as e:
            logger.error("Enrollment storage failed", identity_id=identity_id, **e.to_dict())
            return EnrollmentResult(success=False, quality_report=report, message=e.message)

        logger.info(
            "Enrollment completed",
            identity_id=identity_id,
            template_id=template.template_id,
            security_level=level.value,
            quality_score=round(report.score, 4),
            replaced=already_enrolled,
        )

        return EnrollmentResult(
            success=True,
            template_id=template.template_id,
            quality_report=report,
            message="enrollment completed",
        )

    def delete_enrollment(self, identity_id: str) -> None:
        """
        Destroy the stored template of an identity.

        Raises
        ------
        SessionError
            If an authentication session is active for the identity.
        """
        with self._holding(identity_id):
            self._refuse_during_session(identity_id, "delete an enrollment")
            self.repository.delete(identity_id)
            self._sessions.pop(identity_id, None)
        self._release_lock(identity_id)

        logger.info("Enrollment deleted", identity_id=identity_id)

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    @timer
    def complete_authentication(
        self, identity_id: str, batch: SampleBatch
    ) -> AuthenticationOutcome:
        """
        Process one authentication attempt for an identity.

        Parameters
        ----------
        identity_id : str
            Identity claiming to be authenticated.
        batch : SampleBatch
            Fresh capture.

        Returns
        -------
        AuthenticationOutcome
            ``Approved``, ``RetryRequested``, ``Denied`` or ``Error``.
        """
        lock = self._acquire(identity_id, blocking=False)
        if lock is None:
            error = ConcurrentAuthenticationError(identity_id)
            logger.warning("Concurrent authentication rejected", **error.to_dict())
            return Error(error.message)

        try:
            return self._authenticate(identity_id, batch)
        finally:
            lock.release()

    def _authenticate(self, identity_id: str, batch: SampleBatch) -> AuthenticationOutcome:
        now = self.clock()
        session = self._sessions.get(identity_id)

        if session is not None:
            try:
                session.ensure_open(now)
            except SessionExpiredError as e:
                del self._sessions[identity_id]
                return Error(e.message)
            except SessionClosedError as e:
                return Error(e.message)

        template_or_error = self._load_template(identity_id)
        if isinstance(template_or_error, Error):
            return template_or_error
        template = template_or_error

        if session is None:
            policy = self.policy_provider()
            if policy.lockout_enabled:
                locked_until = self._tracker(policy).locked_until(identity_id, now)
                if locked_until is not None:
                    logger.info(
                        "Authentication refused during cooldown",
                        identity_id=identity_id,
                        locked_until=locked_until.isoformat(),
                    )
                    return Denied(f"locked out until {locked_until.isoformat()}")

            session = AuthenticationSession(identity_id=identity_id, started_at=now, policy=policy)
            self._sessions[identity_id] = session
            logger.info(
                "Authentication session started",
                identity_id=identity_id,
                session_id=session.session_id,
                security_level=template.security_level.value,
            )

        return self._attempt(session, template, batch, now)

    def _load_template(self, identity_id: str) -> Union[Template, Error]:
        try:
            return self.repository.load(identity_id)
        except TemplateNotFoundError:
            return Error(NO_ENROLLMENT)
        except OpenFailedError as e:
            logger.error("Stored template failed to open", identity_id=identity_id, **e.to_dict())
            return Error(TEMPLATE_TAMPERED)
        except HeartIdError as e:
            logger.error("Stored template could not be loaded", identity_id=identity_id, **e.to_dict())
            return Error(e.message)

    def _attempt(
        self,
        session: AuthenticationSession,
        template: Template,
        batch: SampleBatch,
        now: datetime,
    ) -> AuthenticationOutcome:
        policy = session.policy

        report = SignalQualityValidator(policy.quality).validate(batch)
        if not report.is_acceptable:
            outcome = RetryRequested(report.summary, quality_report=report)
            session.record(AttemptRecord(now, None, outcome))
            return outcome

        try:
            vector = self.extractor.extract(batch)
        except FeatureExtractionError as e:
            outcome = RetryRequested(e.message, quality_report=report)
            session.record(AttemptRecord(now, None, outcome))
            return outcome

        confidence = self.scorer.score(template.feature_vector, vector)
        thresholds = policy.thresholds_for(template.security_level)

        if confidence >= thresholds.approve_threshold:
            return self._approve(session, template, confidence, now)

        if confidence >= thresholds.retry_threshold:
            outcome = RetryRequested(
                "Heart rate pattern inconclusive; please capture again",
                confidence=confidence,
            )
            session.record(AttemptRecord(now, confidence, outcome))
            logger.info(
                "Authentication retry requested",
                identity_id=session.identity_id,
                session_id=session.session_id,
                confidence=round(confidence, 4),
            )
            return outcome

        if session.denied_count + 1 >= session.max_attempts:
            outcome = Denied(MAX_ATTEMPTS_REACHED, confidence=confidence)
            session.record(AttemptRecord(now, confidence, outcome))
            session.close(SessionState.LOCKED_OUT)
            if policy.lockout_enabled:
                self._record_lockout(policy, session.identity_id, now)
            return outcome

        outcome = Denied("heart rate pattern does not match", confidence=confidence)
        session.record(AttemptRecord(now, confidence, outcome))
        logger.info(
            "Authentication denied",
            identity_id=session.identity_id,
            session_id=session.session_id,
            confidence=round(confidence, 4),
            denied=session.denied_count,
            max_attempts=session.max_attempts,
        )
        return outcome

    def _approve(
        self,
        session: AuthenticationSession,
        template: Template,
        confidence: float,
        now: datetime,
    ) -> AuthenticationOutcome:
        try:
            self.repository.save(template.record_authentication(now))
        except HeartIdError as e:
            logger.error(
                "Template update after approval failed",
                identity_id=session.identity_id,
                **e.to_dict(),
            )
            outcome = Error(e.message)
            session.record(AttemptRecord(now, confidence, outcome))
            return outcome

        outcome = Approved(confidence)
        session.record(AttemptRecord(now, confidence, outcome))
        session.close(SessionState.APPROVED)
        del self._sessions[session.identity_id]
        if self.lockout_tracker is not None:
            try:
                self.lockout_tracker.record_success(session.identity_id)
            except HeartIdError as e:
                logger.error("Lockout reset failed", identity_id=session.identity_id, **e.to_dict())

        logger.info(
            "Authentication approved",
            identity_id=session.identity_id,
            session_id=session.session_id,
            confidence=round(confidence, 4),
            attempts=len(session.attempts),
        )
        return outcome

    def end_session(self, identity_id: str) -> bool:
        """
        Discard the session of an identity without touching its template.

        Returns
        -------
        bool
            True when a session was discarded.
        """
        with self._holding(identity_id):
            session = self._sessions.pop(identity_id, None)
        self._release_lock(identity_id)

        if session is None:
            return False
        logger.info(
            "Authentication session ended",
            identity_id=identity_id,
            session_id=session.session_id,
            state=session.state.value,
        )
        return True

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def state(self, identity_id: str) -> EngineState:
        if identity_id in self._enrolling:
            return EngineState.ENROLLING
        if self._open_session(identity_id) is not None:
            return EngineState.AUTHENTICATING
        if self.repository.exists(identity_id):
            return EngineState.ENROLLED
        return EngineState.IDLE

    def active_session(self, identity_id: str) -> Optional[AuthenticationSession]:
        """Session held for an identity, including a locked-out one awaiting end_session."""
        return self._sessions.get(identity_id)
