"""Flow execution domain.

This package holds the pieces that make a pipeline resumable:
- immutable flow definitions and state snapshots
- the session registry that owns in-flight runs
- the engine step loop and the control operations between runs
"""

__all__: list[str] = []
