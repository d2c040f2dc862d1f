# =============================================================================
# Verified Financial Report Service
# =============================================================================
# Generates a comparative financial report from two uploaded documents,
# verifies its accounting identities deterministically, and feeds failures
# back to the model for a bounded number of correction rounds. All model
# traffic goes through a resilient client (cache, retry, circuit breaker,
# model selection, cost accounting).
#
# Package structure:
#   app/
#   ├── api/          → FastAPI route handlers (reports, system)
#   ├── agents/       → Generator, corrector and the LangGraph orchestrator
#   ├── db/           → Async engine and the report_runs metrics table
#   ├── models/       → Report domain models, API request/response schemas
#   └── services/     → Resilient client and its parts, verifier, usage,
#                        run registry
# =============================================================================
