"""vett - install vetted agent skills from a registry or any URL.

Skills are resolved to a canonical identity, verified against a registry
signature, written once to a local canonical store, and linked into the skill
directories of every detected AI coding agent.
"""

__version__ = "0.1.0"
