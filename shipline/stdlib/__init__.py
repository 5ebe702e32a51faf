"""Standard library of actions and adapters."""
