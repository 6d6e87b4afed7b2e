"""Step counter backend: sensor baseline tracking and daily step ledger."""
