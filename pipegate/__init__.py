"""
PipeGate - Build, scan and publish pipeline orchestrator with security gates

Runs a compilation stage, security-analysis stages and an artifact-publish
stage as a dependency graph, and gates the pipeline on scan findings:
- Static analysis (SARIF)
- Dependency vulnerability scanning (OWASP Dependency-Check)
- Container image scanning (Trivy)
- Time-bounded vulnerability suppressions
- Deterministic artifact tagging

Copyright (c) 2026 PipeGate Contributors
Licensed under the Apache License 2.0
"""

__version__ = "1.0.0"
__author__ = "PipeGate Contributors"


__all__ = [
    "__version__",
]
