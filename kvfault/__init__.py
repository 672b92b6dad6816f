"""
kvfault: correctness testing of replicated key-value stores under faults.
"""

__version__ = "0.1.0"
