"""Flux Studio adapter package.

Architectural role:
- Defines the external interaction boundary for HTTP and CLI interfaces.
- Performs transport-level validation and response shaping.
- Delegates job orchestration and persistence to `fluxstudio.image` and
  `fluxstudio.storage`.
"""
