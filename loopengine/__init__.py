"""Loop engine: moves tickets through a kanban state machine and supervises agent runs."""

__version__ = "0.1.0"
