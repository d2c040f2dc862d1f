# =============================================================================
# API Package — FastAPI Route Handlers
# =============================================================================
#   - reports.py: start, poll and cancel report runs
#   - system.py:  health, model selection, usage, operational endpoints
#   - deps.py:    dependencies resolving shared state from app.state
# =============================================================================
