"""ccagent: Constitutional Coding for AI Agents.

Drives an external coding agent through three loops:
- init: draft and lock a constitution and story backlog
- build: implement stories one per iteration, using git as a transaction boundary
- check: validate a diff against the constitution
"""

__version__ = "0.1.0"

from ccagent.errors import CcagentError
from ccagent.loop import BuildConfig, BuildLoop, BuildResult, run_build
from ccagent.validator import ConstitutionValidator, Verdict

__all__ = [
    "BuildConfig",
    "BuildLoop",
    "BuildResult",
    "CcagentError",
    "ConstitutionValidator",
    "Verdict",
    "run_build",
]
