"""A dice-expression language for tabletop roleplaying games."""
