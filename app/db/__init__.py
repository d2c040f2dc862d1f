# =============================================================================
# Database Package
# =============================================================================
# Optional run telemetry (METRICS_ENABLED=true).
#
# Key exports:
#   - get_session_factory: per-Settings async session factory
#   - ReportRun: one row per finished pipeline run
# =============================================================================
