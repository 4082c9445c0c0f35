"""Agent optimizer - trend analysis, dynamic alert thresholds and human-approved
optimizations for multi-agent pipelines.

Principle: "Heuristics decide, humans approve"
- Analysis is pure statistics over a bounded metrics history
- Risky threshold and optimization changes wait for a human quorum
- Every applied change can be rolled back to its recorded prior state
"""

__version__ = "0.1.0"
