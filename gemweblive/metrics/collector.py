"""
Performance metrics collection for live sessions.
"""

import json
import time
from dataclasses import dataclass, asdict, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, List, Optional, Any
import structlog

from ..live.session import SessionStats

logger = structlog.get_logger()


@dataclass
class LatencyMetrics:
    """Latency statistics for one measurement."""
    min: float
    max: float
    avg: float
    p50: float
    p95: float
    p99: float
    samples: int


@dataclass
class SessionMetrics:
    """Metrics for a single live session."""
    session_id: str
    model_id: str
    start_time: datetime
    end_time: Optional[datetime] = None
    setup_latencies: List[float] = field(default_factory=list)
    response_latencies: List[float] = field(default_factory=list)
    turns: int = 0
    interruptions: int = 0
    frames_sent: int = 0
    frames_dropped: int = 0
    messages_received: int = 0
    malformed_messages: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)


class MetricsCollector:
    """
    Collects setup latency, response latency and frame counters per session.
    """

    def __init__(self, storage_path: Optional[Path] = None):
        self.storage_path = Path(storage_path) if storage_path else Path.home() / ".gemweblive" / "metrics"
        self.storage_path.mkdir(parents=True, exist_ok=True)

        self.current_session: Optional[SessionMetrics] = None
        self.session_start_time: Optional[float] = None
        self._turn_started_at: Optional[float] = None

    def start_session(self, session_id: str, model_id: str) -> None:
        """Start a new metrics collection session."""
        logger.debug("Starting metrics collection", session_id=session_id)
        self.current_session = SessionMetrics(
            session_id=session_id,
            model_id=model_id,
            start_time=datetime.now(),
        )
        self.session_start_time = time.time()
        self._turn_started_at = None

    def end_session(self, stats: Optional[SessionStats] = None) -> None:
        """End the current session, folding in the transport counters."""
        if not self.current_session:
            logger.warning("No active session to end")
            return

        if stats is not None:
            self.current_session.frames_sent += stats.frames_sent
            self.current_session.frames_dropped += stats.frames_dropped
            self.current_session.messages_received += stats.messages_received
            self.current_session.malformed_messages += stats.malformed_messages
            if stats.setup_latency_ms is not None:
                self.current_session.setup_latencies.append(stats.setup_latency_ms)

        self.current_session.end_time = datetime.now()
        logger.debug("Ending metrics collection",
                     session_id=self.current_session.session_id,
                     turns=self.current_session.turns)

    def mark_user_speech(self) -> None:
        """The user finished speaking; the response clock starts."""
        self._turn_started_at = time.time()

    def mark_model_output(self) -> None:
        """First model output of a turn; records the response latency once."""
        if self.current_session and self._turn_started_at is not None:
            latency_ms = (time.time() - self._turn_started_at) * 1000
            self.current_session.response_latencies.append(latency_ms)
            self._turn_started_at = None

    def record_turn(self) -> None:
        """Record a completed model turn."""
        if self.current_session:
            self.current_session.turns += 1

    def record_interruption(self) -> None:
        """Record a turn the server reported as interrupted."""
        if self.current_session:
            self.current_session.interruptions += 1

    def record_error(self, component: str, error: str, metadata: Optional[Dict] = None) -> None:
        """Record an error occurrence."""
        if self.current_session:
            self.current_session.errors.append({
                "timestamp": datetime.now().isoformat(),
                "component": component,
                "error": error,
                "metadata": metadata or {},
            })

    def _calculate_latency_stats(self, latencies: List[float]) -> LatencyMetrics:
        """Calculate statistical metrics for a list of latencies."""
        if not latencies:
            return LatencyMetrics(0, 0, 0, 0, 0, 0, 0)

        sorted_latencies = sorted(latencies)
        count = len(sorted_latencies)

        def percentile(p: float) -> float:
            index = min(int(p * count), count - 1)
            return sorted_latencies[index]

        return LatencyMetrics(
            min=sorted_latencies[0],
            max=sorted_latencies[-1],
            avg=sum(latencies) / count,
            p50=percentile(0.5),
            p95=percentile(0.95),
            p99=percentile(0.99),
            samples=count,
        )

    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of current session metrics."""
        if not self.current_session:
            return {"error": "No active session"}

        session = self.current_session
        duration = time.time() - self.session_start_time if self.session_start_time else 0
        return {
            "session_id": session.session_id,
            "model_id": session.model_id,
            "session_duration_seconds": duration,
            "turns": session.turns,
            "interruptions": session.interruptions,
            "frames_sent": session.frames_sent,
            "frames_dropped": session.frames_dropped,
            "messages_received": session.messages_received,
            "malformed_messages": session.malformed_messages,
            "setup_latency_ms": asdict(self._calculate_latency_stats(session.setup_latencies)),
            "response_latency_ms": asdict(self._calculate_latency_stats(session.response_latencies)),
            "total_errors": len(session.errors),
        }

    def save_metrics(self) -> Optional[Path]:
        """Save current session metrics to storage."""
        if not self.current_session:
            logger.warning("No session to save")
            return None

        filename = f"session_{self.current_session.session_id}_{datetime.now().strftime('%Y%m%d_%H%M%S')}.json"
        filepath = self.storage_path / filename

        session_dict = asdict(self.current_session)
        session_dict["start_time"] = self.current_session.start_time.isoformat()
        session_dict["end_time"] = (
            self.current_session.end_time.isoformat() if self.current_session.end_time else None
        )

        try:
            with open(filepath, 'w') as f:
                json.dump(session_dict, f, indent=2)
        except OSError as e:
            logger.error("Failed to save metrics", error=str(e))
            return None

        logger.info("Metrics saved", filepath=str(filepath))
        return filepath

    def _load_file(self, filepath: Path) -> SessionMetrics:
        with open(filepath, 'r') as f:
            data = json.load(f)
        data["start_time"] = datetime.fromisoformat(data["start_time"])
        if data.get("end_time"):
            data["end_time"] = datetime.fromisoformat(data["end_time"])
        return SessionMetrics(**data)

    def generate_report(self, days: int = 7) -> Dict[str, Any]:
        """Aggregate the saved sessions of the last N days."""
        cutoff_date = datetime.now() - timedelta(days=days)

        sessions = []
        for filepath in self.storage_path.glob("session_*.json"):
            try:
                if datetime.fromtimestamp(filepath.stat().st_mtime) < cutoff_date:
                    continue
                sessions.append(self._load_file(filepath))
            except (OSError, ValueError, TypeError, KeyError) as e:
                logger.warning("Failed to load session file",
                               filepath=str(filepath), error=str(e))

        if not sessions:
            return {
                "period_days": days,
                "total_sessions": 0,
                "total_turns": 0,
                "message": "No data available for the specified period",
            }

        setup_latencies: List[float] = []
        response_latencies: List[float] = []
        for session in sessions:
            setup_latencies.extend(session.setup_latencies)
            response_latencies.extend(session.response_latencies)

        total_turns = sum(s.turns for s in sessions)
        total_errors = sum(len(s.errors) for s in sessions)
        frames_sent = sum(s.frames_sent for s in sessions)
        frames_dropped = sum(s.frames_dropped for s in sessions)

        return {
            "period_days": days,
            "total_sessions": len(sessions),
            "total_turns": total_turns,
            "total_errors": total_errors,
            "error_rate": total_errors / max(1, total_turns),
            "drop_rate": frames_dropped / max(1, frames_sent + frames_dropped),
            "setup_latency_ms": asdict(self._calculate_latency_stats(setup_latencies)),
            "response_latency_ms": asdict(self._calculate_latency_stats(response_latencies)),
        }
