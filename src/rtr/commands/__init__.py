"""Command groups of the rtr command-line shell."""
