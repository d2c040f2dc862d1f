# =============================================================================
# Services Package — Business Logic
# =============================================================================
#   - llm.py:             provider abstraction (Anthropic, OpenAI-compatible)
#   - client.py:          ResilientClient, the single path to the model
#   - cache.py:           bounded TTL response cache
#   - circuit_breaker.py: Closed / Open / HalfOpen breaker
#   - retry.py:           exponential backoff with jitter
#   - pricing.py:         model catalog, cost, selection policy
#   - usage.py:           spend and token accounting
#   - errors.py:          error taxonomy and classification
#   - verifier.py:        accounting identity checks
#   - runs.py:            in-process registry of report runs
# =============================================================================
