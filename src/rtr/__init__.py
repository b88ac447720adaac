"""
Router configuration core.

Structured management of iptables rules and chains, kernel routing
tables and policy routing rules, with snapshot and idempotent restore.
"""

__version__ = "0.1.0"
