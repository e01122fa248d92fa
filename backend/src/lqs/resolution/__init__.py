"""Identity resolution for LQS uploads.

Components:
- keys: deterministic household key and product/producer normalization
- producer: sub-producer code/name to team member matching
- scorer: weighted household candidate scoring for unlinked sales

Submodules are imported directly; ``lqs.models`` depends on ``keys``.
"""

__all__: list[str] = []
