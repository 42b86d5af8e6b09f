"""Routing — compiled route table with ordered first-match lookup.

Routes are registered during setup and compiled into an immutable
table when the app freezes.
"""
