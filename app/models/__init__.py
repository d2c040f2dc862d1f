# =============================================================================
# Models Package — Pydantic V2 Schemas
# =============================================================================
#   - report.py:    Report, verification certificate, SourceDocument
#   - requests.py:  API input schemas
#   - responses.py: API output schemas
#
# These are SEPARATE from the database models (app/db/models.py).
# =============================================================================
