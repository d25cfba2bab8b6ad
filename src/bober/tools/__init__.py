"""Tools used by Bober agents.

Provides the command allowlist gate, SSH remote execution, and the markdown
report sink that stores each incident's investigation log and final reports.
"""
