"""
Passive traffic triage

Watches traffic flowing through an intercepting proxy and triages each
request/response pair for security risk: a fast signature pre-filter
followed by a slow LLM analyzer, coordinated by a bounded work queue.
"""

__version__ = "1.0.0"
