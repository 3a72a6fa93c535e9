"""IPO Readiness assessment lifecycle engine.

Owns the per-assessment question snapshot, debounced auto-save of answers,
the fixed-rubric readiness score and the submit / review / approve workflow
for company IPO readiness assessments.
"""

__version__ = "0.1.0"
