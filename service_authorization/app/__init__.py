"""
Authorization Service package for the Bazaar Access Layer.

This package decides whether an individual may perform an operation on a
resource, based on status markers and rules that administrators edit at
runtime. It provides:

- app.main: API surface for authorization checks, rule administration and health.
- app.rules: Rule model, evaluator, collaborator interfaces and write-boundary checks.
- app.persistence: PostgreSQL and in-memory rule stores and principal directories.
- app.guard: Caller-side enforcement (administrator bypass, fail-closed, HTTP errors).
- app.client: HTTP client used by other services.

Guidelines:
- The evaluator is stateless; every decision reads current rule data.
- Decisions are never cached, so rule edits apply on the next request.
"""
