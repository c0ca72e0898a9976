"""
Rules package.

Defines the rule model and the evaluator used by the Authorization Service.
A request passes when the global rule (if any) and the rule for its
(resource, operation) pair (if any) each share at least one marker with the
individual, or accept everyone because their marker list is empty.

Modules of interest:
- models: Rule targets, rules, individuals, decisions and API schemas.
- engine: The evaluator and the single-rule check.
- interfaces: Principal directory and rule store contracts.
- validation: Checks applied before rules are written.
"""
