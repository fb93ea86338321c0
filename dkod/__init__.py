"""Building blocks for capturing Claude Code sessions: transcripts, wire events, hooks and git refspecs."""

__version__ = "0.1.1"