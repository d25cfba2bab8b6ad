"""Agents for the Bober incident workflow.

A phase agent wraps one chat conversation with the Ollama backend, a system
instruction, and the tools it may call (remote commands, the analysis log).
"""
