"""Adapters for the collaborators the control core talks to."""
