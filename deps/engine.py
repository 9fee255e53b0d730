from engine.orchestrator import SessionOrchestrator

_orchestrator: SessionOrchestrator | None = None


def get_orchestrator() -> SessionOrchestrator:
    """Shared engine instance; tests swap it through app.dependency_overrides."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = SessionOrchestrator()
    return _orchestrator
