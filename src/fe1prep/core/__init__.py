"""Core business logic module.

Modules:
- progress_rollup: Lesson -> Module -> Subject progress
- simulation: Timed FE-1 essay simulations
- question_selector: Random essay question selection
- essay_grader: LLM-backed essay grading
- content_importer: YAML content import
- errors: Error kinds shared by every module
"""

__all__ = [
    "progress_rollup",
    "simulation",
    "question_selector",
    "essay_grader",
    "content_importer",
    "errors",
]
