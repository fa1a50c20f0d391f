# =============================================================================
# API Package — FastAPI Route Handlers
# =============================================================================
# Each module defines a FastAPI APIRouter for a specific feature:
#   - chat.py: question answering (JSON and server-sent events)
#   - health.py: liveness and provider connectivity
# =============================================================================
