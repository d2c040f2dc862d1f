# =============================================================================
# Agents Package — Generate / Verify / Correct Pipeline
# =============================================================================
#   - generator.py:    builds the first Report from the two source documents
#   - corrector.py:    turns failed checks into targeted fix instructions
#   - parsing.py:      model text → Report, or SchemaError
#   - orchestrator.py: LangGraph graph driving the loop, with progress
#                      events and cooperative cancellation
#   - narrator.py:     spoken summary of a verified report
# =============================================================================
